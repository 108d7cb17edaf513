from flask import Flask, request, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
import os
from typing import Tuple

load_dotenv()

from inspection_kpi.services.kpi_service import aggregate, list_bucket_assets
from inspection_kpi.services.history_service import get_asset_history
from inspection_kpi.services.summary_service import get_transaction_summary, get_mixer_owner_summary
from inspection_kpi.services.transaction_service import DEFAULT_PAGE_SIZE, get_transactions
from inspection_kpi.config_manager import ConfigError, get_config, set_config
from inspection_kpi.database import RecordSourceError
from inspection_kpi.monitoring import metrics, register_monitoring
from inspection_kpi.validators import (
    validate_business_unit,
    validate_configuration,
    validate_equipment_type,
    validate_kpi_request,
    validate_pagination,
)

app = Flask(__name__)
app.json.ensure_ascii = False
CORS(app)
register_monitoring(app)


def _bad_request(message: str):
    return jsonify({"error": {"code": "BAD_REQUEST", "message": message}}), 400


def _source_unavailable(message: str):
    return jsonify({"error": {"code": "SOURCE_UNAVAILABLE", "message": message}}), 503


def _config_unreadable(error: Exception):
    app.logger.error(f"Configuration unreadable: {error}")
    return jsonify({"error": {"code": "CONFIG_READ_ERROR", "message": str(error)}}), 500


@app.route('/health', methods=['GET'])
def health_check() -> Tuple[str, int]:
    return jsonify({"status": "ok"}), 200

# --- KPI Endpoints ---

@app.route('/kpi', methods=['GET'])
def get_kpi():
    """Completion and defect statistics for a business unit and cadence."""
    is_valid, error = validate_kpi_request(request.args)
    if not is_valid:
        return _bad_request(error)

    try:
        result = aggregate(
            request.args['bu'],
            site=request.args.get('site'),
            cadence=request.args.get('frequency'),
            include_records=request.args.get('records', 'false').lower() == 'true',
        )
    except ConfigError as e:
        return _config_unreadable(e)
    metrics.observe_kpi(result['frequency'], result['success'])
    return jsonify(result), 200 if result['success'] else 503


@app.route('/kpi/assets', methods=['GET'])
def get_kpi_assets():
    """Drill-down of one dashboard cell: assets of a type with their latest inspection."""
    is_valid, error = validate_kpi_request(request.args)
    if not is_valid:
        return _bad_request(error)
    is_valid, error = validate_equipment_type(request.args.get('type'))
    if not is_valid:
        return _bad_request(error)

    try:
        result = list_bucket_assets(
            request.args['bu'],
            request.args['type'],
            site=request.args.get('site'),
            cadence=request.args.get('frequency'),
        )
        return jsonify(result), 200
    except RecordSourceError as e:
        app.logger.error(f"Asset drill-down failed: {e}")
        return _source_unavailable(str(e))
    except ConfigError as e:
        return _config_unreadable(e)

# --- Transaction Endpoints ---

@app.route('/api/transaction-summary', methods=['GET'])
def transaction_summary():
    bu = request.args.get('bu')
    is_valid, error = validate_business_unit(bu)
    if not is_valid:
        return _bad_request(error)
    return jsonify(get_transaction_summary(bu)), 200


@app.route('/api/transactions', methods=['GET'])
def transactions():
    """A page of the business unit's inspections, latest first."""
    bu = request.args.get('bu')
    is_valid, error = validate_business_unit(bu)
    if not is_valid:
        return _bad_request(error)
    page = request.args.get('page')
    limit = request.args.get('limit')
    is_valid, error = validate_pagination(page, limit)
    if not is_valid:
        return _bad_request(error)

    try:
        result = get_transactions(
            bu,
            page=int(page) if page is not None else 1,
            limit=int(limit) if limit is not None else DEFAULT_PAGE_SIZE,
        )
        return jsonify(result), 200
    except RecordSourceError as e:
        app.logger.error(f"Error fetching transactions for {bu}: {e}")
        return _source_unavailable(str(e))


@app.route('/api/machine-history/<bu>/<equipment_type>/<path:equipment_id>', methods=['GET'])
def machine_history(bu, equipment_type, equipment_id):
    """All inspections of one asset, latest first."""
    try:
        records = get_asset_history(bu, equipment_type, equipment_id)
        return jsonify({"records": records, "count": len(records)}), 200
    except RecordSourceError as e:
        app.logger.error(f"Error fetching history for {bu}/{equipment_type}/{equipment_id}: {e}")
        return _source_unavailable(str(e))
    except ConfigError as e:
        return _config_unreadable(e)


@app.route('/api/mixer/owners', methods=['GET'])
def mixer_owners():
    """Today's mixer inspections grouped by truck owner."""
    bu = request.args.get('bu')
    is_valid, error = validate_business_unit(bu)
    if not is_valid:
        return _bad_request(error)
    try:
        return jsonify(get_mixer_owner_summary(bu)), 200
    except RecordSourceError as e:
        app.logger.error(f"Error fetching mixers by owner: {e}")
        return _source_unavailable(str(e))
    except ConfigError as e:
        return _config_unreadable(e)

# --- Configuration ---

@app.route('/api/configuration', methods=['GET'])
def get_configuration():
    try:
        config = get_config()
        return jsonify(config)
    except Exception as e:
        app.logger.exception("Failed to read configuration.")
        return jsonify({"error": {"code": "CONFIG_READ_ERROR", "message": str(e)}}), 500


@app.route('/api/configuration', methods=['POST'])
def set_configuration():
    config_data = request.get_json(silent=True)
    is_valid, error = validate_configuration(config_data)
    if not is_valid:
        return _bad_request(error)
    try:
        set_config(config_data)
        return jsonify({"status": "ok"}), 200
    except Exception as e:
        app.logger.exception("Failed to save configuration.")
        return jsonify({"error": {"code": "CONFIG_WRITE_ERROR", "message": str(e)}}), 500


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5001))
    app.run(debug=os.environ.get('FLASK_DEBUG', 'false').lower() == 'true', port=port, host='0.0.0.0')
