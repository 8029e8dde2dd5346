from flask_marshmallow import Marshmallow
from marshmallow import fields
from qistmarket.models import (
    Role,
    User,
    Order,
    Verification,
    PurchaserVerification,
    GrantorVerification,
    NextOfKinVerification,
    LocationTracking,
    VerificationDocument,
)


ma = Marshmallow()


class RoleSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = Role
        fields = ('id', 'name', 'description', 'permissions')


class UserSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = User
        include_fk = True
        fields = ('id', 'full_name', 'username', 'email', 'cnic', 'phone', 'role_id', 'role',
                  'status', 'bio', 'avatar_url', 'cover_image_url', 'permissions',
                  'effective_permissions', 'created_at', 'updated_at')
    role = ma.Nested(RoleSchema, only=('id', 'name'))
    effective_permissions = fields.Dict(dump_only=True)


class UserBriefSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = User
        fields = ('id', 'full_name', 'username')


class PurchaserVerificationSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = PurchaserVerification
        include_fk = True


class GrantorVerificationSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = GrantorVerification
        include_fk = True


class NextOfKinVerificationSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = NextOfKinVerification
        include_fk = True


class LocationTrackingSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = LocationTracking
        include_fk = True


class VerificationDocumentSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = VerificationDocument
        include_fk = True


class VerificationSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = Verification
        include_fk = True
    verification_officer = ma.Nested(UserBriefSchema)
    approved_by_user = ma.Nested(UserBriefSchema, allow_none=True)
    purchaser = ma.Nested(PurchaserVerificationSchema, allow_none=True)
    grantors = ma.Nested(GrantorVerificationSchema, many=True)
    next_of_kin = ma.Nested(NextOfKinVerificationSchema, allow_none=True)
    locations = ma.Nested(LocationTrackingSchema, many=True)
    documents = ma.Nested(VerificationDocumentSchema, many=True)


class OrderSchema(ma.SQLAlchemyAutoSchema):
    class Meta:
        model = Order
        include_fk = True
        exclude = ('dedupe_key',)
    created_by = ma.Nested(UserBriefSchema)
    assigned_to = ma.Nested(UserBriefSchema, allow_none=True)


class OrderWithVerificationSchema(OrderSchema):
    verification = ma.Nested(VerificationSchema, allow_none=True)


role_schema = RoleSchema()
roles_schema = RoleSchema(many=True)
user_schema = UserSchema()
users_schema = UserSchema(many=True)
order_schema = OrderSchema()
orders_schema = OrderSchema(many=True)
orders_with_verification_schema = OrderWithVerificationSchema(many=True)
verification_schema = VerificationSchema()
verifications_schema = VerificationSchema(many=True)
purchaser_schema = PurchaserVerificationSchema()
grantor_schema = GrantorVerificationSchema()
next_of_kin_schema = NextOfKinVerificationSchema()
location_schema = LocationTrackingSchema()
document_schema = VerificationDocumentSchema()
