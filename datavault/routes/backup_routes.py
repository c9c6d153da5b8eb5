"""
Backup routes - status and manual trigger endpoints.
"""

from flask import Blueprint, current_app, jsonify

from datavault.backup.orchestrator import BackupInProgressError


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


def _get_service():
    return current_app.extensions.get('datavault')


@bp.route('/status', methods=['GET'])
def get_status():
    """
    Get backup status.

    Returns:
        JSON with:
        - state: Current orchestrator state
        - running: Whether a cycle is in progress
        - source_folder / interval_seconds / dry_run: Active settings
        - backends: Readiness of every backend
        - last_backup: Most recent report, or null
        - scheduler_status / scheduled_jobs: Scheduler state
    """
    service = _get_service()
    if service is None:
        return jsonify({'error': 'Backup service not configured'}), 503

    orchestrator = service.orchestrator
    last_report = orchestrator.last_report

    return jsonify({
        'state': orchestrator.state.value,
        'running': orchestrator.is_running,
        'source_folder': service.settings.source_folder,
        'interval_seconds': service.settings.backup_interval,
        'dry_run': service.settings.dry_run,
        'backends': service.backend_status(),
        'last_backup': last_report.to_dict() if last_report else None,
        'scheduler_status': 'running' if service.scheduler.is_running else 'stopped',
        'scheduled_jobs': service.scheduler.get_scheduled_jobs()
    })


@bp.route('/run', methods=['POST'])
def run_backup_now():
    """
    Manually trigger a backup cycle.

    Returns:
        202 when queued, 409 when a cycle is already running
    """
    service = _get_service()
    if service is None:
        return jsonify({'error': 'Backup service not configured'}), 503

    try:
        service.scheduler.trigger_now()
    except BackupInProgressError as e:
        return jsonify({'error': str(e)}), 409
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({'message': 'Backup has been queued for immediate execution'}), 202
