"""
Verification workflow: in_progress -> completed -> approved/rejected

Field officers fill in purchaser, grantor and next-of-kin records, drop GPS
samples and upload documents; an administrator then records the decision.
"""
import math
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from qistmarket.error_handler import AuthorizationError, ConflictError, NotFoundError, ValidationError
from qistmarket.helpers import parse_bool
from qistmarket.logger_config import app_logger
from qistmarket.models import (
    GrantorVerification, LocationTracking, NextOfKinVerification, Order, PurchaserVerification,
    Verification, VerificationDocument, VERIFICATION_COMPLETED, VERIFICATION_IN_PROGRESS,
)
from qistmarket.validation import LocationSchema, sanitize_text, validate_request_data

PURCHASER_FIELDS = (
    'name', 'father_husband_name', 'present_address', 'permanent_address', 'cnic_number',
    'telephone_number', 'employer_name', 'employer_address', 'designation', 'official_number',
    'years_in_company', 'gross_salary',
)

GRANTOR_FIELDS = (
    'name', 'father_husband_name', 'present_address', 'permanent_address', 'cnic_number',
    'telephone_number', 'designation', 'official_number', 'office_address', 'company_name',
    'years_in_company', 'monthly_income', 'full_residential_address', 'relationship',
)

NEXT_OF_KIN_FIELDS = ('name', 'cnic_number', 'relation', 'phone_number')

# Document types that also keep their latest URL on the person's record
DOCUMENT_SLOT_FIELDS = {
    'cnic_front': 'cnic_front_url',
    'cnic_back': 'cnic_back_url',
    'utility_bill': 'utility_bill_url',
    'service_card': 'service_card_url',
    'signature': 'signature_url',
}
DOCUMENT_TYPES = tuple(DOCUMENT_SLOT_FIELDS) + ('photo', 'other')
PERSON_TYPES = ('purchaser', 'grantor1', 'grantor2', 'other')
GRANTOR_NUMBERS = (1, 2)

REQUIRED_COPIES = 3
REQUIRED_DOCUMENT_TYPES = ('cnic_front', 'cnic_back', 'signature')

SORTABLE_COLUMNS = {
    'id': Verification.id,
    'created_at': Verification.created_at,
    'start_time': Verification.start_time,
    'end_time': Verification.end_time,
    'status': Verification.status,
}


def parse_grantor_number(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = None
    if number not in GRANTOR_NUMBERS:
        raise ValidationError("Grantor number must be 1 or 2")
    return number


def clean_value(value):
    if value is None:
        return None
    if isinstance(value, str):
        return sanitize_text(value).strip()
    return str(value)


class VerificationWorkflowEngine:
    """
    Operations on verifications for one unit of work

    Mutating calls take the acting User; only the verification's officer
    or an administrator may change it.
    """

    def __init__(self, session, clock=datetime.now):
        self.session = session
        self.clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, order_id, officer_id):
        if self.get_for_order(order_id) is not None:
            raise ConflictError("Verification already started for this order")
        if self.session.get(Order, order_id) is None:
            raise NotFoundError("Order not found")

        now = self.clock()
        verification = Verification(
            order_id=order_id,
            verification_officer_id=officer_id,
            status=VERIFICATION_IN_PROGRESS,
            start_time=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(verification)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("Verification already started for this order")

        app_logger.info(f"Verification #{verification.id} started for order #{order_id} by officer {officer_id}")
        return verification

    def complete(self, verification_id, actor):
        verification = self._get_for_update(verification_id, actor)
        if verification.purchaser is None:
            raise ValidationError("Purchaser verification is required")

        counts = dict(
            self.session.query(VerificationDocument.document_type, func.count(VerificationDocument.id))
            .filter(VerificationDocument.verification_id == verification.id,
                    VerificationDocument.document_type.in_(REQUIRED_DOCUMENT_TYPES))
            .group_by(VerificationDocument.document_type)
            .all()
        )
        shortfalls = [
            f"{document_type} ({counts.get(document_type, 0)}/{REQUIRED_COPIES})"
            for document_type in REQUIRED_DOCUMENT_TYPES
            if counts.get(document_type, 0) < REQUIRED_COPIES
        ]
        if shortfalls:
            raise ValidationError(
                "Minimum 3 CNIC front, 3 CNIC back, and 3 signature copies are required. "
                f"Missing: {', '.join(shortfalls)}",
                details={'missing': shortfalls},
            )

        verification.status = VERIFICATION_COMPLETED
        verification.end_time = self.clock()
        # A fresh submission always goes back to pending review
        verification.is_approved = None
        verification.admin_remarks = None
        verification.approved_by = None
        verification.approved_at = None
        self.session.commit()

        app_logger.info(f"Verification #{verification.id} completed by user {actor.id}")
        return verification

    def approve(self, verification_id, approver_id, decision, remarks=None):
        verification = self.get_verification(verification_id)
        if verification.status != VERIFICATION_COMPLETED:
            raise ConflictError("Verification must be completed before approval")

        is_approved = parse_bool(decision)
        if is_approved is None:
            raise ValidationError("is_approved must be true or false")

        verification.is_approved = is_approved
        verification.admin_remarks = clean_value(remarks)
        verification.approved_by = approver_id
        verification.approved_at = self.clock()
        self.session.commit()

        app_logger.info(
            f"Verification #{verification.id} {'approved' if is_approved else 'rejected'} by user {approver_id}"
        )
        return verification

    # ------------------------------------------------------------------
    # Sub-records
    # ------------------------------------------------------------------

    def upsert_purchaser(self, verification_id, fields, actor):
        verification = self._get_for_update(verification_id, actor)
        return self._upsert(PurchaserVerification, {'verification_id': verification.id}, fields, PURCHASER_FIELDS)

    def upsert_grantor(self, verification_id, grantor_number, fields, actor):
        number = parse_grantor_number(grantor_number)
        verification = self._get_for_update(verification_id, actor)
        return self._upsert(
            GrantorVerification,
            {'verification_id': verification.id, 'grantor_number': number},
            fields,
            GRANTOR_FIELDS,
        )

    def upsert_next_of_kin(self, verification_id, fields, actor):
        verification = self._get_for_update(verification_id, actor)
        return self._upsert(NextOfKinVerification, {'verification_id': verification.id}, fields, NEXT_OF_KIN_FIELDS)

    def add_location(self, verification_id, latitude, longitude, accuracy=None, label=None, actor=None):
        verification = self._get_for_update(verification_id, actor)
        data, errors = validate_request_data(LocationSchema, {
            'latitude': latitude,
            'longitude': longitude,
            'accuracy': accuracy,
            'label': label,
        })
        if errors:
            raise ValidationError("Invalid location", details=errors)

        location = LocationTracking(
            verification_id=verification.id,
            latitude=data['latitude'],
            longitude=data['longitude'],
            accuracy=data.get('accuracy'),
            label=data.get('label') or None,
            timestamp=self.clock(),
        )
        self.session.add(location)
        self.session.commit()
        return location

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def check_upload(self, verification_id, person_type, document_type, actor):
        """
        Validate an upload before the file is stored

        Returns:
            tuple: (verification, person record or None)
        """
        if document_type not in DOCUMENT_TYPES:
            raise ValidationError(f"Invalid document_type. Allowed: {', '.join(DOCUMENT_TYPES)}")
        if person_type not in PERSON_TYPES:
            raise ValidationError(f"Invalid person_type. Allowed: {', '.join(PERSON_TYPES)}")

        verification = self._get_for_update(verification_id, actor)
        return verification, self._person_record(verification, person_type)

    def upload_document(self, verification_id, person_type, document_type, file_url, label=None, actor=None):
        verification, person = self.check_upload(verification_id, person_type, document_type, actor)
        if not file_url:
            raise ValidationError("No file uploaded")

        document = VerificationDocument(
            verification_id=verification.id,
            document_type=document_type,
            person_type=person_type,
            person_id=person.id if person is not None else None,
            label=clean_value(label) or self._default_label(person_type, document_type),
            file_url=file_url,
            uploaded_at=self.clock(),
        )
        self.session.add(document)

        slot = DOCUMENT_SLOT_FIELDS.get(document_type)
        if slot and person is not None:
            setattr(person, slot, file_url)
        self.session.commit()

        app_logger.info(
            f"Document #{document.id} ({document_type}/{person_type}) added to verification #{verification.id}"
        )
        return document

    def delete_document(self, document_id, actor):
        document = self.session.get(VerificationDocument, document_id)
        if document is None:
            raise NotFoundError("Document not found")

        verification = document.verification
        if not (actor.is_admin or verification.verification_officer_id == actor.id):
            raise AuthorizationError("Not authorized to delete this document")

        person_type, document_type, file_url = document.person_type, document.document_type, document.file_url
        person = self._person_record(verification, person_type, required=False)
        slot = DOCUMENT_SLOT_FIELDS.get(document_type)
        self.session.delete(document)
        self.session.flush()

        # Point the slot at the newest remaining copy, if any
        if slot and person is not None and getattr(person, slot) == file_url:
            latest = self.session.query(VerificationDocument).filter_by(
                verification_id=verification.id,
                person_type=person_type,
                document_type=document_type,
            ).order_by(VerificationDocument.uploaded_at.desc(), VerificationDocument.id.desc()).first()
            setattr(person, slot, latest.file_url if latest else None)
        self.session.commit()

        app_logger.info(f"Document #{document_id} deleted by user {actor.id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_verification(self, verification_id):
        verification = self.session.get(Verification, verification_id)
        if verification is None:
            raise NotFoundError("Verification not found")
        return verification

    def get_for_order(self, order_id):
        return self.session.query(Verification).filter_by(order_id=order_id).first()

    def list_verifications(self, page=1, limit=10, sort_by='created_at', sort_dir='desc', status=None,
                           officer_id=None):
        query = self.session.query(Verification)
        if status:
            query = query.filter(Verification.status == status)
        if officer_id is not None:
            query = query.filter(Verification.verification_officer_id == officer_id)
        total = query.count()

        column = SORTABLE_COLUMNS.get(sort_by, Verification.created_at)
        ordering = column.asc() if str(sort_dir).lower() == 'asc' else column.desc()
        verifications = query.order_by(ordering, Verification.id.desc()).offset((page - 1) * limit).limit(limit).all()

        total_pages = math.ceil(total / limit) if limit else 0
        return verifications, {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': total_pages,
            'hasNext': page < total_pages,
            'hasPrev': page > 1,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_for_update(self, verification_id, actor):
        verification = self.get_verification(verification_id)
        if actor is None or not (actor.is_admin or verification.verification_officer_id == actor.id):
            raise AuthorizationError("Only the assigned officer or an administrator can change this verification")
        return verification

    def _person_record(self, verification, person_type, required=True):
        if person_type == 'purchaser':
            record = verification.purchaser
            if record is None and required:
                raise ValidationError("Purchaser verification not found")
            return record
        if person_type in ('grantor1', 'grantor2'):
            number = int(person_type[-1])
            record = self.session.query(GrantorVerification).filter_by(
                verification_id=verification.id, grantor_number=number).first()
            if record is None and required:
                raise ValidationError(f"Grantor {number} not found")
            return record
        return None

    @staticmethod
    def _default_label(person_type, document_type):
        if person_type == 'purchaser':
            return f"{document_type} - Purchaser"
        if person_type in ('grantor1', 'grantor2'):
            return f"{document_type} - Grantor {person_type[-1]}"
        return f"{document_type} - Other"

    def _upsert(self, model, keys, fields, allowed):
        values = {name: clean_value(value) for name, value in (fields or {}).items() if name in allowed}

        record = self.session.query(model).filter_by(**keys).first()
        if record is None:
            record = model(**keys)
            self.session.add(record)
        for name, value in values.items():
            setattr(record, name, value)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost a create race; the other writer's row now exists
            self.session.rollback()
            record = self.session.query(model).filter_by(**keys).first()
            if record is None:
                raise
            for name, value in values.items():
                setattr(record, name, value)
            self.session.commit()
        return record
