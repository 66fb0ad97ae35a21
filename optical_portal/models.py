from datetime import datetime, date

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

# Bound to the app in create_app(); nothing here opens a connection on import.
db = SQLAlchemy()


# -------------------- Staff --------------------
class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default="staff", nullable=False)  # "admin" or "staff"

    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)

    def is_admin(self) -> bool:
        return self.role == "admin"


class Employee(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    initials = db.Column(db.String(10), nullable=True)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# -------------------- Lookup lists --------------------
class Doctor(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class InsuranceProvider(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class DropdownOption(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(80), nullable=False, index=True)
    label = db.Column(db.String(120), nullable=False)
    value = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Float, default=0.0, nullable=False)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LensCategory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    category_key = db.Column(db.String(80), unique=True, nullable=False)
    display_label = db.Column(db.String(120), nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    is_system = db.Column(db.Integer, default=0, nullable=False)  # system categories are locked
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Frame(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(100), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    material = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, default=0.0, nullable=False)
    is_active = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AppSetting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(80), unique=True, nullable=False)
    setting_value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# -------------------- Orders --------------------
class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)

    # ORD-YYYYMMDD-NNNN, sequence is per order date
    order_date_key = db.Column(db.String(8), nullable=False, index=True)  # YYYYMMDD
    order_seq = db.Column(db.Integer, nullable=False)
    order_number = db.Column(db.String(20), unique=True, nullable=False, index=True)

    # Patient
    patient_name = db.Column(db.String(200), nullable=False, index=True)
    order_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    doctor_id = db.Column(db.Integer, db.ForeignKey("doctor.id"), nullable=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employee.id"), nullable=True)
    verified_by_employee_id = db.Column(db.Integer, db.ForeignKey("employee.id"), nullable=True)
    account_number = db.Column(db.String(100), nullable=True)
    insurance = db.Column(db.String(200), nullable=True)
    sold_by = db.Column(db.String(100), nullable=True)
    verified_by = db.Column(db.String(100), nullable=True)

    # Prescription
    od_pd = db.Column(db.String(10))
    os_pd = db.Column(db.String(10))
    binocular_pd = db.Column(db.String(10))
    od_seg_height = db.Column(db.String(10))
    os_seg_height = db.Column(db.String(10))
    od_sphere = db.Column(db.String(20))
    od_cylinder = db.Column(db.String(20))
    od_axis = db.Column(db.String(20))
    od_prism = db.Column(db.String(20))
    od_base = db.Column(db.String(20))
    od_add = db.Column(db.String(20))
    os_sphere = db.Column(db.String(20))
    os_cylinder = db.Column(db.String(20))
    os_axis = db.Column(db.String(20))
    os_prism = db.Column(db.String(20))
    os_base = db.Column(db.String(20))
    os_add = db.Column(db.String(20))

    # Frame
    use_own_frame = db.Column(db.Integer, default=0, nullable=False)
    frame_sku = db.Column(db.String(100))
    frame_material = db.Column(db.String(100))
    frame_name = db.Column(db.String(200))
    frame_formula = db.Column(db.String(50))
    frame_price = db.Column(db.Float, default=0.0, nullable=False)
    frame_allowance = db.Column(db.Float, default=0.0, nullable=False)
    frame_discount_percent = db.Column(db.Float, default=0.0, nullable=False)
    final_frame_price = db.Column(db.Float, default=0.0, nullable=False)

    # Legacy flat lens columns (pre lens_selections_json records)
    lens_design = db.Column(db.String(100))
    lens_design_price = db.Column(db.Float, default=0.0, nullable=False)
    lens_material = db.Column(db.String(100))
    lens_material_price = db.Column(db.Float, default=0.0, nullable=False)
    ar_coating = db.Column(db.String(100))
    ar_coating_price = db.Column(db.Float, default=0.0, nullable=False)
    blue_light = db.Column(db.String(100))
    blue_light_price = db.Column(db.Float, default=0.0, nullable=False)
    transition_polarized = db.Column(db.String(100))
    transition_polarized_price = db.Column(db.Float, default=0.0, nullable=False)
    aspheric = db.Column(db.String(100))
    aspheric_price = db.Column(db.Float, default=0.0, nullable=False)
    edge_treatment = db.Column(db.String(100))
    edge_treatment_price = db.Column(db.Float, default=0.0, nullable=False)
    prism = db.Column(db.String(100))
    prism_price = db.Column(db.Float, default=0.0, nullable=False)
    other_option = db.Column(db.String(100))
    other_option_price = db.Column(db.Float, default=0.0, nullable=False)

    # {category_key: {value, price, insurance_price, label}}
    lens_selections_json = db.Column(db.Text, default="{}", nullable=False)

    # Pricing - regular path
    total_lens_charges = db.Column(db.Float, default=0.0, nullable=False)
    regular_price = db.Column(db.Float, default=0.0, nullable=False)
    sales_tax = db.Column(db.Float, default=0.0, nullable=False)
    you_pay = db.Column(db.Float, default=0.0, nullable=False)
    final_price = db.Column(db.Float, default=0.0, nullable=False)
    you_saved = db.Column(db.Float, default=0.0, nullable=False)
    material_copay = db.Column(db.Float, default=0.0, nullable=False)

    # Pricing - insurance path ("Your Price")
    total_lens_insurance_charges = db.Column(db.Float, default=0.0, nullable=False)
    insurance_regular_price = db.Column(db.Float, default=0.0, nullable=False)
    insurance_sales_tax = db.Column(db.Float, default=0.0, nullable=False)
    insurance_you_pay = db.Column(db.Float, default=0.0, nullable=False)
    insurance_final_price = db.Column(db.Float, default=0.0, nullable=False)

    # Warranty
    warranty_type = db.Column(db.String(100), default="None", nullable=False)
    warranty_price = db.Column(db.Float, default=0.0, nullable=False)

    # Other charges
    other_charges_adjustment = db.Column(db.Float, default=0.0, nullable=False)
    other_charges_notes = db.Column(db.String(500))
    other_percent_adjustment = db.Column(db.Float, default=0.0, nullable=False)
    iwellness = db.Column(db.String(3), default="no", nullable=False)
    iwellness_price = db.Column(db.Float, default=0.0, nullable=False)
    other_charge_1_type = db.Column(db.String(100), default="none", nullable=False)
    other_charge_1_price = db.Column(db.Float, default=0.0, nullable=False)
    other_charge_2_type = db.Column(db.String(100), default="none", nullable=False)
    other_charge_2_price = db.Column(db.Float, default=0.0, nullable=False)

    # Payment
    payment_today = db.Column(db.Float, default=0.0, nullable=False)
    total_balance = db.Column(db.Float, default=0.0, nullable=False)
    total_balance_regular = db.Column(db.Float, default=0.0, nullable=False)
    balance_due = db.Column(db.Float, default=0.0, nullable=False)  # insurance path
    balance_due_regular = db.Column(db.Float, default=0.0, nullable=False)
    payment_mode = db.Column(db.String(20), default="with_insurance", nullable=False)

    special_notes = db.Column(db.Text)
    service_rating = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default="pending", nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    doctor = db.relationship("Doctor")
    employee = db.relationship("Employee", foreign_keys=[employee_id])
    verified_by_employee = db.relationship("Employee", foreign_keys=[verified_by_employee_id])


class OrderLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, nullable=False, index=True)  # kept after order deletion
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    actor_username = db.Column(db.String(80), nullable=True)  # who did it
    action = db.Column(db.String(40), nullable=False)         # created / edited / status_change / deleted
    details = db.Column(db.Text, nullable=True)


# -------------------- Seed data --------------------
DEFAULT_LENS_CATEGORIES = [
    ("lens_design", "Lens Design"),
    ("lens_material", "Lens Material"),
    ("ar_coating", "AR Non-Glare Coating"),
    ("blue_light", "Blue Light Guard"),
    ("transition_polarized", "Transition/Polarized"),
    ("aspheric", "Aspheric"),
    ("edge_treatment", "Edge Treatment"),
    ("prism", "Prism"),
    ("other_option", "Other Add-Ons"),
]

# category -> [(label, price)]; value == label
DEFAULT_OPTIONS = {
    "lens_design": [
        ("SV- Distance", 85.00), ("SV- Reading", 85.00), ("Bifocal FT28", 149.00),
        ("Office Lens (3ft Book)", 230.00), ("Office Lens (7ft Desk)", 230.00),
        ("Office Lens (14ft Room)", 230.00), ("Progressive- Light DX", 229.00),
        ("Progressive- Light VX", 339.00), ("Progressive- Pure", 389.00),
        ("Progressive- Individual", 449.00), ("Relax Dig 500", 175.00),
        ("Relax Dig 750", 175.00), ("Relax Dig 1000", 175.00), ("Relax Dig 1250", 175.00),
    ],
    "lens_material": [
        ("CR39", 0.00), ("Poly", 50.00), ("Trivex", 75.00),
        ("1.67 High Index", 130.00), ("1.74 High Index", 185.00),
    ],
    "ar_coating": [
        ("None", 0.00), ("Good", 99.00), ("Better", 125.00), ("Best", 149.00),
        ("Duravision-Chrome", 99.00), ("Duravision-Silver", 125.00), ("Duravision-Platinum", 149.00),
    ],
    "blue_light": [("None", 0.00), ("Add Blue Guard", 40.00)],
    "transition_polarized": [
        ("None", 0.00), ("Transition Grey", 125.00), ("Transition Brown", 125.00),
        ("Transition Blue", 125.00), ("Polarized Grey", 110.00), ("Polarized Brown", 110.00),
    ],
    "aspheric": [("Non-Aspheric", 0.00), ("Aspheric", 70.00)],
    "edge_treatment": [("None", 0.00), ("Groove & Polish", 30.00), ("Drill & Polish", 50.00)],
    "prism": [
        ("None", 0.00), ("Prism up to 3D", 21.00), ("Prism 3.1 to 6D", 42.00),
        ("Prism 6.1 to 9D", 64.00), ("Prism>9.1D", 80.00),
    ],
    "other_option": [
        ("None", 0.00), ("High Rx>6DSph >3DCyl", 45.00),
        ("Tint- Solid", 50.00), ("Tint-Gradient", 50.00),
    ],
    "frame_material": [("Metal", 0), ("Plastic", 0), ("Titanium", 0), ("Acetate", 0)],
    "warranty": [("None", 0.00), ("Basic Warranty", 35.00), ("Premium Warranty", 45.00)],
}

DEFAULT_DOCTORS = ["Dr. Smith", "Dr. Johnson", "Dr. Williams"]
DEFAULT_INSURANCE_PROVIDERS = [
    "Blue Cross Blue Shield", "UnitedHealthcare", "Aetna", "Cigna", "Humana", "VSP", "EyeMed",
]


def init_database():
    """Create tables and seed lookup lists on first run."""
    db.create_all()

    if not DropdownOption.query.first():
        for category, options in DEFAULT_OPTIONS.items():
            for i, (label, price) in enumerate(options, start=1):
                db.session.add(DropdownOption(
                    category=category, label=label, value=label, price=price, sort_order=i,
                ))
        for name in DEFAULT_DOCTORS:
            db.session.add(Doctor(name=name))
        for name in DEFAULT_INSURANCE_PROVIDERS:
            db.session.add(InsuranceProvider(name=name))

    if not LensCategory.query.first():
        for i, (key, label) in enumerate(DEFAULT_LENS_CATEGORIES, start=1):
            db.session.add(LensCategory(category_key=key, display_label=label, sort_order=i, is_system=1))

    db.session.commit()
