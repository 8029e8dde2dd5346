"""
Verification Routes Blueprint
Field verification records, GPS samples, document uploads and the approval decision
"""
from flask import Blueprint, request

from qistmarket.auth import admin_required, require_auth
from qistmarket.error_handler import NotFoundError, ValidationError
from qistmarket.file_upload import save_verification_file
from qistmarket.helpers import get_json_body, get_page_args, success_response
from qistmarket.models import db
from qistmarket.schemas import (
    document_schema, grantor_schema, location_schema, next_of_kin_schema, purchaser_schema,
    verification_schema, verifications_schema,
)
from qistmarket.services.orders import parse_id
from qistmarket.services.verification import VerificationWorkflowEngine, parse_grantor_number

bp = Blueprint('verification', __name__)


def verification_engine():
    return VerificationWorkflowEngine(db.session)


def store_upload(verification_id, person_type, document_type, label=None):
    """Check permissions and preconditions, save the file, then record the document"""
    engine = verification_engine()
    engine.check_upload(verification_id, person_type, document_type, request.current_user)

    file_info, error = save_verification_file(request.files.get('file'), verification_id, document_type)
    if error:
        raise ValidationError(error)

    return engine.upload_document(
        verification_id, person_type, document_type, file_info['url'],
        label=label, actor=request.current_user,
    )


@bp.route('/verifications', methods=['GET'])
@require_auth
def list_verifications():
    """
    GET /api/verifications?page=&limit=&status=&sortBy=&sortDir=
    Officers only see the verifications they started
    """
    page, limit = get_page_args()
    user = request.current_user
    verifications, pagination = verification_engine().list_verifications(
        page=page,
        limit=limit,
        sort_by=request.args.get('sortBy', 'created_at'),
        sort_dir=request.args.get('sortDir', 'desc'),
        status=request.args.get('status') or None,
        officer_id=None if user.is_admin else user.id,
    )
    return success_response({'verifications': verifications_schema.dump(verifications), 'pagination': pagination})


@bp.route('/verification/start', methods=['POST'])
@require_auth
def start_verification():
    order_id = parse_id(get_json_body().get('order_id'), 'order_id')
    verification = verification_engine().start(order_id, request.user_id)
    return success_response(
        {'verification': verification_schema.dump(verification)},
        message="Verification started successfully",
        status=201,
    )


@bp.route('/verification/order/<int:order_id>', methods=['GET'])
@require_auth
def get_verification_by_order(order_id):
    verification = verification_engine().get_for_order(order_id)
    if verification is None:
        raise NotFoundError("Verification not found")
    return success_response({'verification': verification_schema.dump(verification)})


@bp.route('/verification/<int:verification_id>/purchaser', methods=['POST'])
@require_auth
def save_purchaser(verification_id):
    purchaser = verification_engine().upsert_purchaser(verification_id, get_json_body(), request.current_user)
    return success_response({'purchaser': purchaser_schema.dump(purchaser)},
                            message="Purchaser verification saved successfully")


@bp.route('/verification/<int:verification_id>/grantor/<grantor_number>', methods=['POST'])
@require_auth
def save_grantor(verification_id, grantor_number):
    grantor = verification_engine().upsert_grantor(
        verification_id, grantor_number, get_json_body(), request.current_user)
    return success_response({'grantor': grantor_schema.dump(grantor)},
                            message=f"Grantor {grantor.grantor_number} verification saved successfully")


@bp.route('/verification/<int:verification_id>/next-of-kin', methods=['POST'])
@require_auth
def save_next_of_kin(verification_id):
    next_of_kin = verification_engine().upsert_next_of_kin(verification_id, get_json_body(), request.current_user)
    return success_response({'next_of_kin': next_of_kin_schema.dump(next_of_kin)},
                            message="Next of kin saved successfully")


@bp.route('/verification/<int:verification_id>/location', methods=['POST'])
@require_auth
def save_location(verification_id):
    data = get_json_body()
    location = verification_engine().add_location(
        verification_id,
        data.get('latitude'),
        data.get('longitude'),
        accuracy=data.get('accuracy'),
        label=data.get('label'),
        actor=request.current_user,
    )
    return success_response({'location': location_schema.dump(location)},
                            message="Location saved successfully", status=201)


@bp.route('/verification/<int:verification_id>/purchaser/document', methods=['POST'])
@require_auth
def upload_purchaser_document(verification_id):
    """
    POST /api/verification/<id>/purchaser/document (multipart: file, document_type)
    """
    document = store_upload(verification_id, 'purchaser', request.form.get('document_type'))
    return success_response({'document': document_schema.dump(document)},
                            message="Document uploaded successfully", status=201)


@bp.route('/verification/<int:verification_id>/grantor/<grantor_number>/document', methods=['POST'])
@require_auth
def upload_grantor_document(verification_id, grantor_number):
    number = parse_grantor_number(grantor_number)
    document = store_upload(verification_id, f"grantor{number}", request.form.get('document_type'))
    return success_response({'document': document_schema.dump(document)},
                            message="Document uploaded successfully", status=201)


@bp.route('/verification/<int:verification_id>/photo', methods=['POST'])
@require_auth
def upload_photo(verification_id):
    """
    POST /api/verification/<id>/photo (multipart: file, person_type, label)
    """
    person_type = request.form.get('person_type')
    label = request.form.get('label') or f"Photo - {person_type}"
    document = store_upload(verification_id, person_type, 'photo', label=label)
    return success_response({'document': document_schema.dump(document)},
                            message="Photo uploaded successfully", status=201)


@bp.route('/verification/<int:verification_id>/signature', methods=['POST'])
@require_auth
def upload_signature(verification_id):
    person_type = request.form.get('person_type')
    document = store_upload(verification_id, person_type, 'signature', label=f"Signature - {person_type}")
    return success_response({'document': document_schema.dump(document)},
                            message="Signature uploaded successfully", status=201)


@bp.route('/verification/<int:verification_id>/document', methods=['POST'])
@require_auth
def upload_document(verification_id):
    """
    POST /api/verification/<id>/document (multipart: file, person_type, document_type, label)
    """
    document = store_upload(
        verification_id,
        request.form.get('person_type'),
        request.form.get('document_type'),
        label=request.form.get('label'),
    )
    return success_response({'document': document_schema.dump(document)},
                            message="Document uploaded successfully", status=201)


@bp.route('/verification/document/<int:document_id>', methods=['DELETE'])
@require_auth
def delete_document(document_id):
    verification_engine().delete_document(document_id, request.current_user)
    return success_response(message="Document deleted successfully")


@bp.route('/verification/<int:verification_id>/complete', methods=['POST'])
@require_auth
def complete_verification(verification_id):
    verification = verification_engine().complete(verification_id, request.current_user)
    return success_response({'verification': verification_schema.dump(verification)},
                            message="Verification completed successfully")


@bp.route('/verification/<int:verification_id>/approve', methods=['POST'])
@admin_required
def approve_verification(verification_id):
    """
    POST /api/verification/<id>/approve {"is_approved": true|false, "admin_remarks": "..."}
    """
    data = get_json_body()
    verification = verification_engine().approve(
        verification_id,
        request.user_id,
        data.get('is_approved'),
        remarks=data.get('admin_remarks'),
    )
    decision = 'approved' if verification.is_approved else 'rejected'
    return success_response({'verification': verification_schema.dump(verification)},
                            message=f"Verification {decision} successfully")
