"""
Routes for the analytics blueprint — organization dashboard and its
CSV / Excel export.
"""

from flask import jsonify, make_response, request
from flask_login import current_user, login_required

from readiness import rbac
from readiness.blueprints.analytics import bp
from readiness.decorators import permission_required
from readiness.errors import ValidationError
from readiness.services import analytics_service, export_service
from readiness.utils import get_json_body, utcnow


@bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    """
    Dashboard metrics with filters from the query string.

    Query Parameters:
        organizationId, start, end, department, surveyIds (comma list).
    """
    filters = analytics_service.DashboardFilters.from_query(request.args)
    return jsonify(analytics_service.get_dashboard(current_user, filters))


@bp.route("/dashboard", methods=["POST"])
@login_required
def dashboard_filtered():
    """Dashboard metrics with filters from a JSON body."""
    filters = analytics_service.DashboardFilters.from_body(get_json_body())
    return jsonify(analytics_service.get_dashboard(current_user, filters))


@bp.route("/dashboard/export/<fmt>")
@login_required
@permission_required(rbac.API_EXPORT_ACCESS)
def export_dashboard(fmt):
    """Download the dashboard summary as CSV or a multi-sheet workbook."""
    if fmt not in export_service.EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}'. Use csv or xlsx.")

    filters = analytics_service.DashboardFilters.from_query(request.args)
    data = analytics_service.get_dashboard(current_user, filters)
    summary = analytics_service.summary_rows(data)

    timestamp = utcnow().strftime("%Y%m%d")
    filename = f"dashboard_org{data['organizationId']}_{timestamp}.{fmt}"
    if fmt == "csv":
        buffer = export_service.export_dashboard_csv(data, summary)
        content_type = export_service.CSV_CONTENT_TYPE
    else:
        buffer = export_service.export_dashboard_excel(data, summary)
        content_type = export_service.XLSX_CONTENT_TYPE

    response = make_response(buffer.read())
    response.headers["Content-Type"] = content_type
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response
