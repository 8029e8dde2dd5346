from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

ROLE_SUPER_ADMIN = 'Super Admin'
ROLE_ADMIN = 'Admin'
ROLE_VERIFICATION_OFFICER = 'Verification Officer'
ROLE_SALES_OFFICER = 'Sales Officer'
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)

USER_STATUS_ACTIVE = 'active'
USER_STATUS_INACTIVE = 'inactive'

ORDER_STATUSES = ('new', 'assigned', 'in_progress', 'completed', 'delivered', 'cancelled')
# Orders in these states no longer count as open work or as duplicates
CLOSED_ORDER_STATUSES = ('cancelled', 'delivered')

VERIFICATION_IN_PROGRESS = 'in_progress'
VERIFICATION_COMPLETED = 'completed'

DEFAULT_ROLES = {
    ROLE_SUPER_ADMIN: {
        'description': 'Head office, full access',
        'permissions': {'manage_users': True, 'manage_orders': True, 'approve_verifications': True},
    },
    ROLE_ADMIN: {
        'description': 'Branch administrator',
        'permissions': {'manage_users': True, 'manage_orders': True, 'approve_verifications': True},
    },
    ROLE_VERIFICATION_OFFICER: {
        'description': 'Field officer who verifies customers',
        'permissions': {'verify_orders': True},
    },
    ROLE_SALES_OFFICER: {
        'description': 'Takes customer orders',
        'permissions': {'create_orders': True},
    },
}


class Role(db.Model):
    __tablename__ = 'roles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), unique=True, nullable=False)
    description = db.Column(db.String(255))
    permissions = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.now)

    users = db.relationship('User', backref='role', lazy=True)

    def __repr__(self):
        return f'<Role {self.name}>'


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(150), nullable=False)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=True)
    cnic = db.Column(db.String(20), unique=True, nullable=True)
    phone = db.Column(db.String(20), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=False)

    # Single active device for the mobile app
    device_id = db.Column(db.String(255))
    status = db.Column(db.String(20), default=USER_STATUS_ACTIVE, nullable=False)

    # Profile
    bio = db.Column(db.Text)
    avatar_url = db.Column(db.String(500))
    cover_image_url = db.Column(db.String(500))
    fcm_token = db.Column(db.String(500))

    # Per-user overrides merged over the role's permission set
    permissions = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def role_name(self):
        return self.role.name if self.role else None

    @property
    def is_admin(self):
        return self.role_name in ADMIN_ROLES

    @property
    def is_verification_officer(self):
        return self.role_name == ROLE_VERIFICATION_OFFICER

    @property
    def is_active(self):
        return self.status == USER_STATUS_ACTIVE

    @property
    def effective_permissions(self):
        merged = dict(self.role.permissions or {}) if self.role else {}
        merged.update(self.permissions or {})
        return merged

    def __repr__(self):
        return f'<User {self.username}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    order_ref = db.Column(db.String(30), nullable=False, index=True)
    token_number = db.Column(db.String(8), nullable=False, index=True)

    # Customer
    customer_name = db.Column(db.String(150), nullable=False)
    whatsapp_number = db.Column(db.String(20), nullable=False, index=True)
    address = db.Column(db.Text, nullable=False)
    city = db.Column(db.String(100))
    area = db.Column(db.String(100))

    # Product & installment terms
    product_name = db.Column(db.String(255), nullable=False)
    total_amount = db.Column(db.Float, nullable=False)
    advance_amount = db.Column(db.Float, nullable=False)
    monthly_amount = db.Column(db.Float, nullable=False)
    months = db.Column(db.Integer, nullable=False)
    channel = db.Column(db.String(50), nullable=False)

    status = db.Column(db.String(20), default='new', nullable=False, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)

    # Hash of contact|product|day while the order is open, NULL once closed
    dedupe_key = db.Column(db.String(64), unique=True, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.now, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    created_by = db.relationship('User', foreign_keys=[created_by_user_id], backref='created_orders')
    assigned_to = db.relationship('User', foreign_keys=[assigned_to_user_id], backref='assigned_orders')
    verification = db.relationship('Verification', backref='order', uselist=False, lazy=True)

    def __repr__(self):
        return f'<Order {self.order_ref} - {self.status}>'


class Verification(db.Model):
    __tablename__ = 'verifications'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), unique=True, nullable=False)
    verification_officer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)

    status = db.Column(db.String(20), default=VERIFICATION_IN_PROGRESS, nullable=False)
    start_time = db.Column(db.DateTime)
    end_time = db.Column(db.DateTime)

    # NULL = pending, True = approved, False = rejected
    is_approved = db.Column(db.Boolean, nullable=True)
    admin_remarks = db.Column(db.Text)
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    approved_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    verification_officer = db.relationship('User', foreign_keys=[verification_officer_id])
    approved_by_user = db.relationship('User', foreign_keys=[approved_by])

    purchaser = db.relationship('PurchaserVerification', backref='verification', uselist=False,
                                lazy=True, cascade='all, delete-orphan')
    grantors = db.relationship('GrantorVerification', backref='verification', lazy=True,
                               cascade='all, delete-orphan',
                               order_by='GrantorVerification.grantor_number')
    next_of_kin = db.relationship('NextOfKinVerification', backref='verification', uselist=False,
                                  lazy=True, cascade='all, delete-orphan')
    locations = db.relationship('LocationTracking', backref='verification', lazy=True,
                                cascade='all, delete-orphan',
                                order_by='LocationTracking.timestamp.desc()')
    documents = db.relationship('VerificationDocument', backref='verification', lazy=True,
                                cascade='all, delete-orphan',
                                order_by='VerificationDocument.uploaded_at.desc()')

    def __repr__(self):
        return f'<Verification {self.id} Order#{self.order_id} - {self.status}>'


class PurchaserVerification(db.Model):
    __tablename__ = 'purchaser_verifications'

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.Integer, db.ForeignKey('verifications.id'), unique=True, nullable=False)

    name = db.Column(db.String(150))
    father_husband_name = db.Column(db.String(150))
    present_address = db.Column(db.Text)
    permanent_address = db.Column(db.Text)
    cnic_number = db.Column(db.String(20))
    telephone_number = db.Column(db.String(20))
    employer_name = db.Column(db.String(150))
    employer_address = db.Column(db.Text)
    designation = db.Column(db.String(100))
    official_number = db.Column(db.String(50))
    years_in_company = db.Column(db.String(20))
    gross_salary = db.Column(db.String(50))

    # Latest URL per document slot
    cnic_front_url = db.Column(db.String(500))
    cnic_back_url = db.Column(db.String(500))
    utility_bill_url = db.Column(db.String(500))
    service_card_url = db.Column(db.String(500))
    signature_url = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f'<PurchaserVerification for Verification {self.verification_id}>'


class GrantorVerification(db.Model):
    __tablename__ = 'grantor_verifications'

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.Integer, db.ForeignKey('verifications.id'), nullable=False)
    grantor_number = db.Column(db.Integer, nullable=False)  # 1 or 2

    name = db.Column(db.String(150))
    father_husband_name = db.Column(db.String(150))
    present_address = db.Column(db.Text)
    permanent_address = db.Column(db.Text)
    cnic_number = db.Column(db.String(20))
    telephone_number = db.Column(db.String(20))
    designation = db.Column(db.String(100))
    official_number = db.Column(db.String(50))
    office_address = db.Column(db.Text)
    company_name = db.Column(db.String(150))
    years_in_company = db.Column(db.String(20))
    monthly_income = db.Column(db.String(50))
    full_residential_address = db.Column(db.Text)
    relationship = db.Column(db.String(100))

    cnic_front_url = db.Column(db.String(500))
    cnic_back_url = db.Column(db.String(500))
    utility_bill_url = db.Column(db.String(500))
    service_card_url = db.Column(db.String(500))
    signature_url = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('verification_id', 'grantor_number', name='unique_verification_grantor'),
    )

    def __repr__(self):
        return f'<GrantorVerification {self.grantor_number} for Verification {self.verification_id}>'


class NextOfKinVerification(db.Model):
    __tablename__ = 'next_of_kin_verifications'

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.Integer, db.ForeignKey('verifications.id'), unique=True, nullable=False)

    name = db.Column(db.String(150))
    cnic_number = db.Column(db.String(20))
    relation = db.Column(db.String(100))
    phone_number = db.Column(db.String(20))

    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f'<NextOfKinVerification for Verification {self.verification_id}>'


class LocationTracking(db.Model):
    """GPS samples captured during a visit, insert-only"""
    __tablename__ = 'location_tracking'

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.Integer, db.ForeignKey('verifications.id'), nullable=False, index=True)
    latitude = db.Column(db.Float, nullable=False)
    longitude = db.Column(db.Float, nullable=False)
    accuracy = db.Column(db.Float)
    label = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def __repr__(self):
        return f'<LocationTracking {self.latitude},{self.longitude} for Verification {self.verification_id}>'


class VerificationDocument(db.Model):
    __tablename__ = 'verification_documents'

    id = db.Column(db.Integer, primary_key=True)
    verification_id = db.Column(db.Integer, db.ForeignKey('verifications.id'), nullable=False, index=True)
    document_type = db.Column(db.String(50), nullable=False)
    person_type = db.Column(db.String(20), nullable=False)  # 'purchaser', 'grantor1', 'grantor2', 'other'
    person_id = db.Column(db.Integer)
    label = db.Column(db.String(255))
    file_url = db.Column(db.String(500), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def __repr__(self):
        return f'<VerificationDocument {self.document_type} ({self.person_type}) for Verification {self.verification_id}>'


def seed_roles(session):
    """Insert any missing default roles, returns the number created"""
    created = 0
    for name, attrs in DEFAULT_ROLES.items():
        if Role.query.filter_by(name=name).first():
            continue
        session.add(Role(name=name, description=attrs['description'], permissions=dict(attrs['permissions'])))
        created += 1
    session.commit()
    return created
