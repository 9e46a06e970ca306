"""
Scan API views.

REST endpoints for triggering scans and polling their progress:
- POST /api/v1/products/<id>/scan/   queue a scan
- GET  /api/v1/products/<id>/scans/  recent runs of a product
- GET  /api/v1/scans/<id>/           progress of one run

All endpoints require authentication; triggering is rate limited.
"""

import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from scan_engine.api.throttling import ScanTriggerThrottle
from scan_engine.models import Product, ScanRun, ScanRunStatus
from scan_engine.services.scan_progress import ScanProgress
from scan_engine.tasks import run_product_scan

logger = logging.getLogger(__name__)

RECENT_RUNS_LIMIT = 20


def _run_payload(run: ScanRun) -> dict:
    progress = ScanProgress.from_dict(run.progress)
    return {
        'scan_run_id': str(run.id),
        'product_id': str(run.product_id),
        'run_number': run.run_number,
        'status': run.status,
        'current_stage': run.current_stage or None,
        'percent_complete': progress.percent_complete,
        'stages': [stage.to_dict() for stage in progress.stages],
        'budget': {
            'limit': run.budget_limit,
            'used': run.budget_used,
            'queries_skipped': run.queries_skipped,
        },
        'results': {
            'raw_hits': run.raw_hits,
            'false_positives_filtered': run.false_positives_filtered,
            'new_infringements': run.new_infringements,
            'rediscovered': run.rediscovered,
            'relisted': run.relisted,
            'est_revenue_loss': float(run.est_revenue_loss),
        },
        'started_at': run.started_at.isoformat() if run.started_at else None,
        'completed_at': run.completed_at.isoformat() if run.completed_at else None,
        'duration_seconds': run.duration_seconds,
        'error': run.error_message or None,
    }


@extend_schema(
    tags=['Scans'],
    summary='Trigger a product scan',
    description='Queue a piracy scan for a product. Poll the product runs or the run itself for progress.',
    parameters=[
        OpenApiParameter(name='product_id', type=OpenApiTypes.UUID, location=OpenApiParameter.PATH),
    ],
    responses={
        202: {
            'description': 'Scan queued',
            'content': {
                'application/json': {
                    'example': {
                        'success': True,
                        'product_id': '3f1c2b8e-0d7a-4b6e-9a51-2c4e8f0b1d23',
                        'task_id': 'c0a8f3e2-5b7d-4c19-8e62-91d4f7a3b0c5',
                        'status': 'queued',
                        'runs_url': '/api/v1/products/3f1c2b8e-0d7a-4b6e-9a51-2c4e8f0b1d23/scans/',
                    }
                }
            }
        },
        404: {'description': 'Product not found'},
        409: {'description': 'A scan is already running for this product'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([ScanTriggerThrottle])
def trigger_product_scan(request, product_id):
    """
    Queue a scan for a product.

    Only one scan per product may be running at a time.
    """
    try:
        product = Product.objects.get(pk=product_id)
    except Product.DoesNotExist:
        return Response({'error': 'Product not found'}, status=status.HTTP_404_NOT_FOUND)

    running = ScanRun.objects.filter(product=product, status=ScanRunStatus.RUNNING).first()
    if running is not None:
        return Response(
            {
                'error': 'A scan is already running for this product',
                'scan_run_id': str(running.id),
            },
            status=status.HTTP_409_CONFLICT,
        )

    result = run_product_scan.apply_async(args=[str(product.id)])
    logger.info(f"Queued scan for product {product.id} (task {result.id})")

    return Response(
        {
            'success': True,
            'product_id': str(product.id),
            'task_id': result.id,
            'status': 'queued',
            'runs_url': f'/api/v1/products/{product.id}/scans/',
        },
        status=status.HTTP_202_ACCEPTED,
    )


@extend_schema(
    tags=['Scans'],
    summary='List product scan runs',
    parameters=[
        OpenApiParameter(name='product_id', type=OpenApiTypes.UUID, location=OpenApiParameter.PATH),
    ],
    responses={200: {'description': 'Most recent scan runs, newest first'}, 404: {'description': 'Product not found'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def list_product_scans(request, product_id):
    """List the most recent scan runs of a product."""
    if not Product.objects.filter(pk=product_id).exists():
        return Response({'error': 'Product not found'}, status=status.HTTP_404_NOT_FOUND)

    runs = ScanRun.objects.filter(product_id=product_id).order_by('-started_at')[:RECENT_RUNS_LIMIT]
    return Response({'runs': [_run_payload(run) for run in runs]})


@extend_schema(
    tags=['Scans'],
    summary='Get scan progress',
    parameters=[
        OpenApiParameter(name='scan_run_id', type=OpenApiTypes.UUID, location=OpenApiParameter.PATH),
    ],
    responses={
        200: {
            'description': 'Scan run progress',
            'content': {
                'application/json': {
                    'example': {
                        'scan_run_id': 'a2d4c6e8-1b3f-4a5c-9e7d-0f2b4d6a8c1e',
                        'status': 'running',
                        'current_stage': 'trademark_search',
                        'percent_complete': 29,
                        'budget': {'limit': 75, 'used': 31, 'queries_skipped': 0},
                    }
                }
            }
        },
        404: {'description': 'Scan run not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_scan_progress(request, scan_run_id):
    """
    Get the live progress of a scan run.

    Stage states are updated after every transition while the run is going.
    """
    try:
        run = ScanRun.objects.get(pk=scan_run_id)
    except ScanRun.DoesNotExist:
        return Response({'error': 'Scan run not found'}, status=status.HTTP_404_NOT_FOUND)

    return Response(_run_payload(run))
