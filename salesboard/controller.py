import functools
import io
import json
import logging

import click
from dateutil.relativedelta import relativedelta
from flask import Flask, g, request, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

import salesboard.dashboard as dashboard_util
from salesboard.aggregation import compare_periods, previous_period, summarize_by_month, summarize_period
from salesboard.auth import AuthError, TokenIssuer, authenticate, bearer_token, seed_users
from salesboard.backup import BackupStorage, backup_database
from salesboard.config import load_settings
from salesboard.constants import ROLE_ADMIN
from salesboard.diagnosis import diagnose
from salesboard.importer import (
    BulkImportError,
    ImportManager,
    UndoUnavailableError,
    build_template,
    month_bounds,
    template_filename,
)
from salesboard.metrics import calculate_metrics, to_api_record
from salesboard.pricing import PricingInputs, calculate_pricing
from salesboard.reports import ReportService, from_api_texts, to_api_report
from salesboard.store import RecordNotFoundError, get_store
from salesboard.validator import RecordValidator, ValidationError, parse_record_date

app = Flask(__name__)

cors = CORS(app, resources={r"/*": {"origins": "*"}})

import_manager = ImportManager()

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class RequestError(ValueError):
    """Raised for a malformed request; answered with HTTP 400."""


# ---------------------------------------------------------------------------
# Application plumbing
# ---------------------------------------------------------------------------

def get_settings():
    settings = app.config.get("SETTINGS")
    if settings is None:
        settings = load_settings()
        app.config["SETTINGS"] = settings
    return settings


def open_store():
    settings = get_settings()
    return get_store(settings.db_backend, settings.db_config)


def get_db():
    """The store for the current request, connected on first use and with the schema in place."""
    if "store" not in g:
        store = open_store()
        store.connect()
        if not app.config.get("SCHEMA_READY"):
            store.initialize_schema()
            app.config["SCHEMA_READY"] = True
        g.store = store
    return g.store


@app.teardown_appcontext
def close_db(exception=None):
    store = g.pop("store", None)
    if store is not None:
        store.disconnect()


def get_token_issuer():
    settings = get_settings()
    return TokenIssuer(settings.secret_key, settings.token_ttl_seconds)


def _json_response(payload, status=200):
    return app.response_class(
        response=json.dumps(payload, indent=4, cls=dashboard_util.Encoder),
        status=status,
        mimetype='application/json'
    )


def _error_response(status, code, message, **extra):
    body = {"status": "error", "code": code, "message": message}
    body.update(extra)
    return _json_response(body, status)


def token_required(view):
    """Rejects requests without a valid bearer token; the token payload is stored in ``g.user``."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        token = bearer_token(request.headers.get("Authorization"))
        if not token:
            return _error_response(401, "unauthorized", "Access token required")
        try:
            g.user = get_token_issuer().verify(token)
        except AuthError as e:
            return _error_response(e.status, "forbidden", str(e))
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    """Must be applied under ``token_required``."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        if g.get("user", {}).get("role") != ROLE_ADMIN:
            return _error_response(403, "forbidden", "Admin access required")
        return view(*args, **kwargs)

    return wrapper


def _date_arg(*names):
    for name in names:
        value = request.args.get(name)
        if value:
            try:
                return parse_record_date(value)
            except ValueError as e:
                raise RequestError(str(e))
    return None


def _date_range_args():
    """Reads an inclusive start/end range from the query string."""
    start = _date_arg("start", "startDate")
    end = _date_arg("end", "endDate")
    return _check_range(start, end)


def _body_date_range(body):
    try:
        start = parse_record_date(body.get("startDate"))
        end = parse_record_date(body.get("endDate"))
    except ValueError as e:
        raise RequestError(str(e))
    return _check_range(start, end)


def _check_range(start, end):
    if not start or not end:
        raise RequestError("Start and End date required")
    if start > end:
        raise RequestError(f"Start date {start} is after end date {end}")
    return start, end


def _fetch_with_previous(store, start, end):
    """Records of ``[start, end]`` and of the equally long period before it."""
    prev_start, _ = previous_period(start, end)
    return store.fetch_records(prev_start, end)


def _record_payload(record: dict) -> dict:
    return to_api_record(calculate_metrics(record))


def _records_payload(records_df) -> list:
    records = []
    for row in records_df.to_dict(orient="records"):
        row["date"] = row["date"].date()
        records.append(_record_payload(row))
    return records


def _upload_args():
    month = request.form.get("month") or request.args.get("month")
    upload = request.files.get("file")
    if not month or upload is None:
        raise RequestError("Month and file are required")
    return month, upload.read(), upload.filename or ""


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return _error_response(400, "validation_error", "Invalid date or values", errors=e.errors)


@app.errorhandler(RecordNotFoundError)
def handle_not_found(e):
    return _error_response(404, "not_found", str(e))


@app.errorhandler(BulkImportError)
def handle_import_error(e):
    return _error_response(400, "import_error", str(e))


@app.errorhandler(UndoUnavailableError)
def handle_undo_unavailable(e):
    return _error_response(400, "undo_unavailable", str(e))


@app.errorhandler(RequestError)
def handle_request_error(e):
    return _error_response(400, "bad_request", str(e))


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    logging.error(e, exc_info=True)
    return _error_response(500, "server_error", "Unexpected server error")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@app.route('/api/auth/login', methods=['POST'])
def login():
    """
    Exchanges a username and password for an access token.
    :return: The token and the user's id, username and role
    """
    body = request.get_json(silent=True) or {}
    try:
        user = authenticate(get_db(), body.get("username"), body.get("password"))
    except AuthError as e:
        return _error_response(e.status, "invalid_credentials", str(e))

    return _json_response({"token": get_token_issuer().issue(user), "user": user})


# ---------------------------------------------------------------------------
# Daily records
# ---------------------------------------------------------------------------

@app.route('/api/records', methods=['GET'])
@token_required
def list_records():
    """
    Lists daily records with their derived metrics, either for ?month=YYYY-MM
    or for an inclusive ?startDate=&endDate= range.
    """
    month = request.args.get("month")
    if request.args.get("startDate") or request.args.get("start"):
        start, end = _date_range_args()
    elif month:
        try:
            start, end = month_bounds(month)
        except BulkImportError as e:
            raise RequestError(str(e))
    else:
        start, end = None, None

    return _json_response(_records_payload(get_db().fetch_records(start, end)))


@app.route('/api/records', methods=['POST'])
@token_required
@admin_required
def save_record():
    """
    Creates the record for its date, or overwrites the existing one.
    :return: The saved record with derived metrics and whether it was created or updated
    """
    record = RecordValidator(request.get_json(silent=True)).validate()
    saved, mode = get_db().upsert_record(record)
    return _json_response({"status": "success", "mode": mode, "data": _record_payload(saved)})


@app.route('/api/records/<int:record_id>', methods=['PUT'])
@token_required
@admin_required
def update_record(record_id):
    values = RecordValidator(request.get_json(silent=True), require_date=False).validate()
    updated = get_db().update_record(record_id, values)
    return _json_response({"status": "success", "mode": "update", "data": _record_payload(updated)})


# ---------------------------------------------------------------------------
# Metrics and dashboard
# ---------------------------------------------------------------------------

@app.route('/api/summary', methods=['GET'])
@token_required
def get_summary():
    """
    Totals and weighted ratios for an inclusive date range, with its daily records.
    """
    start, end = _date_range_args()
    records_df = get_db().fetch_records(start, end)
    payload = dashboard_util.summary_payload(summarize_period(records_df, start, end))

    payload["records"] = _records_payload(records_df)
    return _json_response(payload)


@app.route('/api/funnel', methods=['GET'])
@token_required
def get_funnel():
    start, end = _date_range_args()
    comparison = compare_periods(_fetch_with_previous(get_db(), start, end), start, end)
    return _json_response({
        "current": dashboard_util.summary_payload(comparison.current),
        "previous": dashboard_util.summary_payload(comparison.previous),
        "levels": dashboard_util.build_funnel(comparison),
    })


@app.route('/api/dashboard', methods=['GET'])
@token_required
def get_dashboard():
    start, end = _date_range_args()
    deck = dashboard_util.build_dashboard(
        _fetch_with_previous(get_db(), start, end), start, end, title=get_settings().client_name)
    return _json_response(deck)


@app.route('/api/monthly', methods=['GET'])
@token_required
def get_monthly_table():
    """
    The daily table of one month with per-day health status. The previous
    month is loaded as lookback for the rolling comparisons.
    """
    month = request.args.get("month")
    if not month:
        raise RequestError("month is required")
    try:
        first_day, last_day = month_bounds(month)
    except BulkImportError as e:
        raise RequestError(str(e))

    lookback_start = first_day - relativedelta(months=1)
    records_df = get_db().fetch_records(lookback_start, last_day)
    return _json_response(dashboard_util.build_monthly_table(records_df, month))


@app.route('/api/monthly/summary', methods=['GET'])
@token_required
def get_monthly_summary():
    """
    Totals and weighted ratios per calendar month of an inclusive date range,
    oldest month first. Months without records are left out.
    """
    start, end = _date_range_args()
    summaries = summarize_by_month(get_db().fetch_records(start, end))
    return _json_response([dashboard_util.summary_payload(summary) for summary in summaries])


# ---------------------------------------------------------------------------
# Analysis and reports
# ---------------------------------------------------------------------------

@app.route('/api/analysis', methods=['GET'])
@token_required
def get_analysis():
    """
    Diagnoses a date range against its previous period. The first time a range
    with data is analysed, version 1 of its report is published.
    """
    start, end = _date_range_args()
    store = get_db()
    comparison = compare_periods(_fetch_with_previous(store, start, end), start, end)
    diagnosis = diagnose(comparison)

    published, created = None, False
    if comparison.current.record_count:
        published, created = ReportService(store, get_settings().client_name).auto_publish(start, end, diagnosis)

    return _json_response({
        "startDate": comparison.current.start,
        "endDate": comparison.current.end,
        "comparisonStartDate": comparison.previous.start,
        "comparisonEndDate": comparison.previous.end,
        "report": diagnosis,
        "blocks": dashboard_util.build_analysis_blocks(diagnosis),
        "published": to_api_report(published) if published else None,
        "autoPublished": created,
    })


@app.route('/api/analysis/publish', methods=['POST'])
@token_required
@admin_required
def publish_analysis():
    """
    Publishes the next version of a range's report, with any edited text.
    """
    body = request.get_json(silent=True) or {}
    start, end = _body_date_range(body)

    store = get_db()
    diagnosis = diagnose(compare_periods(_fetch_with_previous(store, start, end), start, end))
    report = ReportService(store, get_settings().client_name).publish_new_version(
        start, end, diagnosis, from_api_texts(body.get("edits") or {}))
    return _json_response({"status": "success", "report": to_api_report(report)})


@app.route('/api/reports', methods=['POST'])
@token_required
@admin_required
def save_report():
    body = request.get_json(silent=True) or {}
    start, end = _body_date_range(body)

    service = ReportService(get_db(), get_settings().client_name)
    report = service.save(start, end, from_api_texts(body), version=body.get("version"),
                          client_name=body.get("clientName"))
    return _json_response({"status": "success", "report": to_api_report(report)})


@app.route('/api/reports/check', methods=['GET'])
@token_required
def check_report():
    start, end = _date_range_args()
    try:
        version = int(request.args.get("version") or 1)
    except ValueError:
        raise RequestError("version must be an integer")

    report = ReportService(get_db()).check(start, end, version)
    return _json_response({"exists": report is not None, "report": to_api_report(report) if report else None})


@app.route('/api/reports', methods=['GET'])
@token_required
def report_history():
    return _json_response([to_api_report(report) for report in ReportService(get_db()).history()])


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------

@app.route('/api/import/template', methods=['GET'])
@token_required
@admin_required
def download_template():
    """
    Downloads the import template, pre-filled with the days of ?month= when given.
    """
    month = request.args.get("month")
    content = build_template(month)
    return send_file(io.BytesIO(content), mimetype=XLSX_MIMETYPE, as_attachment=True,
                     download_name=template_filename(month))


@app.route('/api/import/preview', methods=['POST'])
@token_required
@admin_required
def preview_import():
    month, content, filename = _upload_args()
    preview = import_manager.preview(get_db(), month, content, filename)
    return _json_response({"status": "success", "preview": preview})


@app.route('/api/import/confirm', methods=['POST'])
@token_required
@admin_required
def confirm_import():
    month, content, filename = _upload_args()
    result = import_manager.confirm(get_db(), month, content, filename)
    return _json_response({"status": "success", "mode": "import", "result": result})


@app.route('/api/import/undo', methods=['POST'])
@token_required
@admin_required
def undo_import():
    result = import_manager.undo(get_db())
    return _json_response({"status": "success", "mode": "undo", "result": result})


@app.route('/api/import/undo-status', methods=['GET'])
@token_required
@admin_required
def undo_status():
    return _json_response(import_manager.undo_status())


# ---------------------------------------------------------------------------
# Pricing lab and health
# ---------------------------------------------------------------------------

@app.route('/api/pricing/simulate', methods=['POST'])
@token_required
def simulate_pricing():
    try:
        inputs = PricingInputs.from_payload(request.get_json(silent=True) or {})
    except ValueError as e:
        raise RequestError(str(e))
    return _json_response({"inputs": inputs, "result": calculate_pricing(inputs)})


@app.route('/api/health', methods=['GET'])
def health():
    return _json_response({"status": "ok"})


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@app.cli.command("init-db")
def init_db_command():
    """Create the database tables."""
    with open_store() as store:
        store.initialize_schema()
    click.echo("Database initialised")


@app.cli.command("seed-users")
@click.option("--password", default=None, help="Password for the seeded users.")
def seed_users_command(password):
    """Create or reset the default admin and client users."""
    with open_store() as store:
        store.initialize_schema()
        seeded = seed_users(store, password or get_settings().seed_password)
    click.echo(f"Seeded users: {', '.join(seeded)}")


@app.cli.command("backup-db")
def backup_db_command():
    """Write a timestamped backup of the database."""
    settings = get_settings()
    with open_store() as store:
        location = backup_database(store, BackupStorage(settings.storage_option, settings.storage_bucket))
    click.echo(f"Backup created: {location}")


def start():
    logging.basicConfig(level=get_settings().log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return app


if __name__ == "__main__":
    start().run(debug=False, port=5001, host='0.0.0.0')
