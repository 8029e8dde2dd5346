"""
Order lifecycle: intake with duplicate suppression, status changes and
assignment of orders to verification officers
"""
import hashlib
import math
import random
import secrets
from datetime import datetime, timedelta

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from qistmarket.error_handler import ConflictError, NotFoundError, ValidationError
from qistmarket.logger_config import app_logger, log_error_with_context
from qistmarket.models import (
    Order, Role, User, Verification,
    ORDER_STATUSES, CLOSED_ORDER_STATUSES, ROLE_VERIFICATION_OFFICER, USER_STATUS_ACTIVE,
)
from qistmarket.validation import OrderCreateSchema, validate_request_data

DUPLICATE_MESSAGE = "Duplicate active order detected today."

SEARCH_COLUMNS = (
    Order.customer_name, Order.whatsapp_number, Order.order_ref, Order.token_number,
    Order.product_name, Order.city, Order.area,
)

EXACT_FILTERS = {
    'status': Order.status,
    'channel': Order.channel,
    'city': Order.city,
    'area': Order.area,
    'product_name': Order.product_name,
}

SORTABLE_COLUMNS = {
    'id': Order.id,
    'created_at': Order.created_at,
    'updated_at': Order.updated_at,
    'customer_name': Order.customer_name,
    'product_name': Order.product_name,
    'total_amount': Order.total_amount,
    'status': Order.status,
    'city': Order.city,
}


def generate_order_ref(when):
    """QIST-<YYYYMMDD>-<4 digits>, human friendly and not guaranteed unique"""
    return f"QIST-{when:%Y%m%d}-{random.randint(1000, 9999)}"


def generate_token_number():
    """8 uppercase hex characters"""
    return secrets.token_hex(4).upper()


def make_dedupe_key(contact, product, when):
    return hashlib.sha256(f"{contact}|{product}|{when:%Y%m%d}".encode('utf-8')).hexdigest()


def parse_id(value, name):
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


class OrderLifecycleEngine:
    """
    Operations on orders for one unit of work

    Args:
        session: SQLAlchemy session the operations run in
        notifier: object with notify_assignment(officer, order); optional
        clock: callable returning the current local datetime
    """

    def __init__(self, session, notifier=None, clock=datetime.now):
        self.session = session
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def create_order(self, fields, creator_id):
        data, errors = validate_request_data(OrderCreateSchema, fields)
        if errors:
            raise ValidationError("Required fields are missing.", details=errors)

        now = self.clock()
        contact = data['whatsapp_number']
        product = data['product_name']
        day_start = datetime(now.year, now.month, now.day)

        duplicate = self.session.query(Order.id).filter(
            Order.whatsapp_number == contact,
            Order.product_name == product,
            Order.created_at >= day_start,
            Order.created_at < day_start + timedelta(days=1),
            Order.status.notin_(CLOSED_ORDER_STATUSES),
        ).first()
        if duplicate:
            raise ConflictError(DUPLICATE_MESSAGE)

        order = Order(
            order_ref=generate_order_ref(now),
            token_number=generate_token_number(),
            customer_name=data['customer_name'],
            whatsapp_number=contact,
            address=data['address'],
            city=data.get('city') or None,
            area=data.get('area') or None,
            product_name=product,
            total_amount=data['total_amount'],
            advance_amount=data['advance_amount'],
            monthly_amount=data['monthly_amount'],
            months=data['months'],
            channel=data['channel'],
            status='new',
            created_by_user_id=creator_id,
            dedupe_key=make_dedupe_key(contact, product, now),
            created_at=now,
            updated_at=now,
        )
        self.session.add(order)
        try:
            self.session.commit()
        except IntegrityError:
            # A concurrent identical order won the unique dedupe key
            self.session.rollback()
            raise ConflictError(DUPLICATE_MESSAGE)

        app_logger.info(f"Order {order.order_ref} (#{order.id}) created by user {creator_id}")
        return order

    def update_status(self, order_id, status, actor_id=None):
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid status. Allowed: {', '.join(ORDER_STATUSES)}")

        order = self.get_order(order_id)
        if order.status in CLOSED_ORDER_STATUSES:
            raise ConflictError(f"Order is already {order.status}")

        previous = order.status
        order.status = status
        order.updated_at = self.clock()
        if status in CLOSED_ORDER_STATUSES:
            order.dedupe_key = None
        self.session.commit()

        app_logger.info(f"Order #{order.id} status {previous} -> {status} by user {actor_id}")
        return order

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(self, order_id, officer_id=None, action='assign', actor_id=None):
        order = self.get_order(order_id)

        if action == 'unassign':
            if order.assigned_to_user_id is None:
                raise ConflictError("Order is not assigned")
            if self._conditional_update([order.id], None, expect_assigned=True) != 1:
                self.session.rollback()
                raise ConflictError("Order is not assigned")
            self.session.commit()
            app_logger.info(f"Order #{order.id} unassigned by user {actor_id}")
            return order

        if action != 'assign':
            raise ValidationError("Invalid action. Use 'assign' or 'unassign'")
        if officer_id is None:
            raise ValidationError("officer_id is required")
        if order.assigned_to_user_id is not None:
            raise ConflictError("Order is already assigned")

        officer = self._load_officer(officer_id)
        if self._conditional_update([order.id], officer.id) != 1:
            self.session.rollback()
            raise ConflictError("Order is already assigned")
        self.session.commit()

        app_logger.info(f"Order #{order.id} assigned to officer {officer.id} by user {actor_id}")
        self._notify(officer, order)
        return order

    def assign_bulk(self, order_ids, officer_id=None, action='assign', actor_id=None):
        ids = self._parse_id_list(order_ids)

        if action == 'unassign':
            updated = self._conditional_update(ids, None, expect_assigned=True)
            self.session.commit()
            app_logger.info(f"Bulk unassign of {updated}/{len(ids)} orders by user {actor_id}")
            return {'action': 'unassign', 'order_ids': ids, 'updated': updated}

        if action != 'assign':
            raise ValidationError("Invalid action. Use 'assign' or 'unassign'")
        if officer_id is None:
            raise ValidationError("officer_id is required")

        officer = self._load_officer(officer_id)
        orders = self.session.query(Order).filter(Order.id.in_(ids)).all()

        found = {order.id for order in orders}
        missing = [order_id for order_id in ids if order_id not in found]
        if missing:
            raise NotFoundError("Some orders were not found", details={'missing_ids': missing})

        already_assigned = sorted(order.id for order in orders if order.assigned_to_user_id is not None)
        if already_assigned:
            raise ConflictError("Some orders are already assigned",
                                details={'assigned_ids': already_assigned})

        if self._conditional_update(ids, officer.id) != len(ids):
            self.session.rollback()
            raise ConflictError("Some orders were assigned concurrently, nothing was changed")
        self.session.commit()

        app_logger.info(f"Bulk assigned {len(ids)} orders to officer {officer.id} by user {actor_id}")
        for order in sorted(orders, key=lambda o: o.id):
            self._notify(officer, order)
        return {'action': 'assign', 'order_ids': ids, 'officer_id': officer.id, 'updated': len(ids)}

    def auto_assign(self, actor_id=None):
        """
        Distribute every new unassigned order to the least loaded active officer

        Ties go to the officer with the lowest id. Orders that another writer
        assigned mid-sweep are reported as skipped.
        """
        result = {'assigned': [], 'skipped': []}
        pending = self.session.query(Order).filter(
            Order.status == 'new',
            Order.assigned_to_user_id.is_(None),
        ).order_by(Order.id.asc()).all()
        if not pending:
            return result

        officers = self.active_officers()
        if not officers:
            result['skipped'] = [order.id for order in pending]
            app_logger.warning(f"Auto-assign: no active verification officers, {len(pending)} orders left")
            return result

        workload = self.open_assignment_counts([officer.id for officer in officers])
        made = []
        for order in pending:
            officer = min(officers, key=lambda o: workload[o.id])
            if self._conditional_update([order.id], officer.id) != 1:
                result['skipped'].append(order.id)
                continue
            workload[officer.id] += 1
            made.append((officer, order))
            result['assigned'].append({'order_id': order.id, 'officer_id': officer.id})
        self.session.commit()

        app_logger.info(
            f"Auto-assign by user {actor_id}: {len(result['assigned'])} assigned, "
            f"{len(result['skipped'])} skipped"
        )
        for officer, order in made:
            self._notify(officer, order)
        return result

    def active_officers(self):
        return self.session.query(User).join(Role, User.role_id == Role.id).filter(
            Role.name == ROLE_VERIFICATION_OFFICER,
            User.status == USER_STATUS_ACTIVE,
        ).order_by(User.id.asc()).all()

    def open_assignment_counts(self, officer_ids):
        """{officer_id: number of assigned orders not cancelled or delivered}"""
        counts = {officer_id: 0 for officer_id in officer_ids}
        rows = self.session.query(Order.assigned_to_user_id, func.count(Order.id)).filter(
            Order.assigned_to_user_id.in_(list(counts)),
            Order.status.notin_(CLOSED_ORDER_STATUSES),
        ).group_by(Order.assigned_to_user_id).all()
        for officer_id, open_count in rows:
            counts[officer_id] = open_count
        return counts

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id):
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def list_orders(self, page=1, limit=10, search=None, sort_by='created_at', sort_dir='desc', filters=None):
        query = self._filtered_query(search, filters)
        total = query.count()

        column = SORTABLE_COLUMNS.get(sort_by, Order.created_at)
        ordering = column.asc() if str(sort_dir).lower() == 'asc' else column.desc()
        orders = query.order_by(ordering, Order.id.desc()).offset((page - 1) * limit).limit(limit).all()

        total_pages = math.ceil(total / limit) if limit else 0
        return orders, {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': total_pages,
            'hasNext': page < total_pages,
            'hasPrev': page > 1,
        }

    def scroll_orders(self, last_id=0, limit=10, search=None, filters=None):
        query = self._filtered_query(search, filters)
        total_count = query.count()

        if last_id and last_id > 0:
            query = query.filter(Order.id < last_id)
        orders = query.order_by(Order.id.desc()).limit(limit).all()

        count = len(orders)
        return orders, {
            'nextLastId': orders[-1].id if orders else None,
            'hasMore': count == limit,
            'limit': limit,
            'count': count,
            'totalCount': total_count,
        }

    def list_verification_orders(self, officer_id=None):
        """Assigned orders that already have a verification, newest first"""
        query = self.session.query(Order).join(Verification, Verification.order_id == Order.id).filter(
            Order.assigned_to_user_id.isnot(None)
        )
        if officer_id is not None:
            query = query.filter(Order.assigned_to_user_id == officer_id)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _filtered_query(self, search=None, filters=None):
        query = self.session.query(Order)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(*[column.ilike(pattern) for column in SEARCH_COLUMNS]))

        for key, value in (filters or {}).items():
            if value in (None, ''):
                continue
            if key in EXACT_FILTERS:
                query = query.filter(EXACT_FILTERS[key] == value)
            elif key == 'assigned_to':
                assignee = aliased(User)
                query = query.join(assignee, Order.assigned_to_user_id == assignee.id).filter(
                    assignee.username == value)
            elif key == 'created_by':
                creator = aliased(User)
                query = query.join(creator, Order.created_by_user_id == creator.id).filter(
                    creator.username == value)
        return query

    def _conditional_update(self, order_ids, officer_id, expect_assigned=False):
        """Set the assignee only where the current assignee matches expectations; returns rowcount"""
        guard = Order.assigned_to_user_id.isnot(None) if expect_assigned else Order.assigned_to_user_id.is_(None)
        return self.session.query(Order).filter(Order.id.in_(order_ids), guard).update(
            {Order.assigned_to_user_id: officer_id, Order.updated_at: self.clock()},
            synchronize_session='fetch',
        )

    def _load_officer(self, officer_id):
        officer = self.session.get(User, parse_id(officer_id, 'officer_id'))
        if officer is None or not officer.is_verification_officer:
            raise ValidationError("Invalid Verification Officer")
        return officer

    @staticmethod
    def _parse_id_list(order_ids):
        if not isinstance(order_ids, list) or not order_ids:
            raise ValidationError("order_ids must be a non-empty list")
        ids = []
        for value in order_ids:
            order_id = parse_id(value, 'order_ids')
            if order_id not in ids:
                ids.append(order_id)
        return ids

    def _notify(self, officer, order):
        if self.notifier is None:
            return
        try:
            self.notifier.notify_assignment(officer, order)
        except Exception as e:
            log_error_with_context(e, {'action': 'notify_assignment', 'order_id': order.id})
