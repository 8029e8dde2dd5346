"""
Orders Routes Blueprint
Handles order intake, listing, status changes and officer assignment
"""
from flask import Blueprint, current_app, request

from qistmarket.auth import admin_required, require_auth
from qistmarket.helpers import get_int_arg, get_json_body, get_page_args, success_response
from qistmarket.models import db
from qistmarket.schemas import order_schema, orders_schema, orders_with_verification_schema
from qistmarket.services.orders import OrderLifecycleEngine, SORTABLE_COLUMNS, EXACT_FILTERS

bp = Blueprint('orders', __name__)

FILTER_ARGS = tuple(EXACT_FILTERS) + ('assigned_to', 'created_by')


def order_engine():
    return OrderLifecycleEngine(db.session, notifier=current_app.extensions.get('qist_notifier'))


def filters_from_args():
    return {name: request.args.get(name) for name in FILTER_ARGS if request.args.get(name)}


@bp.route('/orders/create', methods=['POST'])
@require_auth
def create_order():
    """
    POST /api/orders/create
    Create a new installment order; the creator is the caller
    """
    order = order_engine().create_order(get_json_body(), request.user_id)
    return success_response({'order': order_schema.dump(order)}, message="Order created successfully", status=201)


@bp.route('/orders', methods=['GET'])
@require_auth
def get_orders():
    """
    GET /api/orders?page=&limit=&search=&sortBy=&sortDir=&status=...
    Offset-paginated order list
    """
    page, limit = get_page_args()
    sort_by = request.args.get('sortBy', 'created_at')
    if sort_by not in SORTABLE_COLUMNS:
        sort_by = 'created_at'

    orders, pagination = order_engine().list_orders(
        page=page,
        limit=limit,
        search=request.args.get('search', '').strip() or None,
        sort_by=sort_by,
        sort_dir=request.args.get('sortDir', 'desc'),
        filters=filters_from_args(),
    )
    return success_response({'orders': orders_schema.dump(orders), 'pagination': pagination})


@bp.route('/orders/scroll', methods=['GET'])
@require_auth
def scroll_orders():
    """
    GET /api/orders/scroll?lastId=&limit=
    Cursor pagination for infinite scrolling, newest first
    """
    _, limit = get_page_args()
    orders, pagination = order_engine().scroll_orders(
        last_id=get_int_arg('lastId', 0, minimum=0),
        limit=limit,
        search=request.args.get('search', '').strip() or None,
        filters=filters_from_args(),
    )
    return success_response({'orders': orders_schema.dump(orders), 'pagination': pagination})


@bp.route('/orders/verification', methods=['GET'])
@require_auth
def get_verification_orders():
    """
    GET /api/orders/verification
    Assigned orders with their verification; officers only see their own
    """
    user = request.current_user
    officer_id = None if user.is_admin else user.id
    orders = order_engine().list_verification_orders(officer_id=officer_id)
    return success_response({'orders': orders_with_verification_schema.dump(orders)})


@bp.route('/orders/auto-assign', methods=['POST'])
@admin_required
def auto_assign_orders():
    result = order_engine().auto_assign(actor_id=request.user_id)
    return success_response(
        result,
        message=f"{len(result['assigned'])} orders assigned, {len(result['skipped'])} skipped",
    )


@bp.route('/orders/assign-bulk', methods=['POST'])
@admin_required
def assign_orders_bulk():
    """
    POST /api/orders/assign-bulk
    {"order_ids": [...], "officer_id": n} or {"order_ids": [...], "action": "unassign"}
    """
    data = get_json_body()
    result = order_engine().assign_bulk(
        data.get('order_ids'),
        officer_id=data.get('officer_id'),
        action=data.get('action', 'assign'),
        actor_id=request.user_id,
    )
    message = ("Orders assigned successfully" if result['action'] == 'assign'
               else f"{result['updated']} orders unassigned")
    return success_response(result, message=message)


@bp.route('/orders/<int:order_id>', methods=['GET'])
@require_auth
def get_order(order_id):
    order = order_engine().get_order(order_id)
    return success_response({'order': order_schema.dump(order)})


@bp.route('/orders/<int:order_id>/assign', methods=['PATCH'])
@admin_required
def assign_order(order_id):
    """
    PATCH /api/orders/<id>/assign
    {"officer_id": n} to assign, {"action": "unassign"} to release
    """
    data = get_json_body()
    action = data.get('action', 'assign')
    order = order_engine().assign(
        order_id,
        officer_id=data.get('officer_id'),
        action=action,
        actor_id=request.user_id,
    )
    message = "Order assigned successfully" if action == 'assign' else "Order unassigned successfully"
    return success_response({'order': order_schema.dump(order)}, message=message)


@bp.route('/orders/<int:order_id>/status', methods=['PATCH'])
@admin_required
def update_order_status(order_id):
    order = order_engine().update_status(order_id, get_json_body().get('status'), actor_id=request.user_id)
    return success_response({'order': order_schema.dump(order)}, message="Order status updated successfully")
