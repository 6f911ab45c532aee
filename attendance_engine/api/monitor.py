"""
Health and Performance Monitoring
Reports database and recognition service health plus in-process metrics.
"""
from flask import Blueprint, jsonify
import logging
import threading
from datetime import datetime, timezone

from attendance_engine.repositories.mongo_repository import ping
from attendance_engine.services.container import get_services
from attendance_engine.utils.metrics import metrics

logger = logging.getLogger(__name__)

monitor_bp = Blueprint('monitor', __name__)

@monitor_bp.route('/api/health')
def health():
    """Database and recognition service health."""
    services = get_services()
    database_ok = ping(services.db)
    recognition = services.recognition_client.check_health()

    healthy = database_ok and recognition.get('status') == 'healthy'
    body = {
        'status': 'healthy' if healthy else 'degraded',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'database': {'status': 'healthy' if database_ok else 'unhealthy'},
        'recognition_service': recognition,
    }
    if not database_ok:
        logger.warning("Health check: database unreachable")
        return jsonify(body), 503
    return jsonify(body)

@monitor_bp.route('/api/performance-stats')
def get_performance_stats():
    """Get in-process performance statistics."""
    stats = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'operations': metrics.get_stats(),
        'system': {
            'active_threads': threading.active_count()
        }
    }
    return jsonify(stats)
