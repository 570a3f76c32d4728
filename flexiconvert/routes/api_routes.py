"""API routes."""

from flask import Blueprint

from flexiconvert.services import conversion_service, status_service

api_bp = Blueprint("api", __name__)

api_bp.add_url_rule(
    "/api/<api_category>-tools/process",
    endpoint="process_upload",
    view_func=conversion_service.process_upload,
    methods=["POST"],
)
api_bp.add_url_rule(
    "/api/<api_category>-tools/download/<record_id>",
    endpoint="category_download",
    view_func=conversion_service.download,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/download/<record_id>",
    endpoint="download",
    view_func=conversion_service.download,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/status/<record_id>",
    endpoint="get_status",
    view_func=status_service.get_status,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/api/tools",
    endpoint="list_tools",
    view_func=conversion_service.list_tools,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/api/tools/<api_category>",
    endpoint="list_category_tools",
    view_func=conversion_service.list_category_tools,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/api/conversions/history",
    endpoint="history",
    view_func=status_service.history,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/api/conversions/stats",
    endpoint="stats",
    view_func=status_service.stats,
    methods=["GET"],
)
api_bp.add_url_rule(
    "/api/conversions/<record_id>",
    endpoint="delete_record",
    view_func=status_service.delete_record,
    methods=["DELETE"],
)
