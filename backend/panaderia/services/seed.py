from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from panaderia.core.logging_config import get_logger
from panaderia.core.security import hash_password
from panaderia.models.raw_material import RawMaterial
from panaderia.models.role import Role
from panaderia.models.user import User
from panaderia.services.rbac import ROLE_PERMISSIONS, serialize_permissions


logger = get_logger("services.seed")

DEFAULT_USERS = [
    ("admin@panaderia.local", "Administrador", "Admin123!", "Admin"),
    ("encargado@panaderia.local", "Encargado de almacen", "Encargado123!", "Encargado"),
    ("panadero@panaderia.local", "Panadero", "Panadero123!", "Panadero"),
]

DEMO_RAW_MATERIALS = [
    ("Harina de trigo", "kg", Decimal("100"), Decimal("20"), "Molinos del Centro", 180),
    ("Azucar", "kg", Decimal("40"), Decimal("10"), "Azucarera La Esperanza", 365),
    ("Mantequilla", "kg", Decimal("12"), Decimal("5"), "Lacteos San Juan", 30),
    ("Huevo", "unidad", Decimal("360"), Decimal("120"), "Granja El Roble", 21),
    ("Levadura", "kg", Decimal("3"), Decimal("2"), None, 60),
    ("Leche", "l", Decimal("24"), Decimal("12"), "Lacteos San Juan", 10),
]


def seed_initial_data(db: Session, with_demo_items: bool = True) -> None:
    if (db.scalar(select(func.count(Role.id))) or 0) == 0:
        for role_name in ROLE_PERMISSIONS:
            db.add(Role(name=role_name, permissions=serialize_permissions(role_name)))
        db.commit()
        logger.info("Roles iniciales creados")

    if (db.scalar(select(func.count(User.id))) or 0) == 0:
        roles = {role.name: role for role in db.scalars(select(Role)).all()}
        db.add_all(
            [
                User(
                    email=email,
                    full_name=full_name,
                    hashed_password=hash_password(password),
                    role_id=roles[role_name].id,
                )
                for email, full_name, password, role_name in DEFAULT_USERS
            ]
        )
        db.commit()
        logger.info("Usuarios iniciales creados")

    if with_demo_items and (db.scalar(select(func.count(RawMaterial.id))) or 0) == 0:
        today = date.today()
        db.add_all(
            [
                RawMaterial(
                    name=name,
                    unit=unit,
                    quantity=quantity,
                    initial_quantity=quantity,
                    minimum=minimum,
                    supplier=supplier,
                    expiration_date=today + timedelta(days=shelf_days),
                )
                for name, unit, quantity, minimum, supplier, shelf_days in DEMO_RAW_MATERIALS
            ]
        )
        db.commit()
        logger.info("Materias primas de ejemplo creadas")
