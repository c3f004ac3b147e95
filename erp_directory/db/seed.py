"""
db/seed.py
----------
Demo data for cascading selection.

A "Payments" directory has a payment_type relation to "Payment Types".
Two payment types carry a cascadingConfig:

    buying_raw_material  ->  inventory (Inventory)
                             raw_material (Raw Materials, dependsOn inventory)
    salary               ->  department (Departments)
                             employee (Employees, dependsOn department)

Dependent records point at their parent through metadata parentValue:
circuits and sensors belong to electronics, cotton and silk to textiles.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.logging import get_logger
from erp_directory.models.directory import Directory
from erp_directory.services.cascade_engine import CascadeEngine
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding

logger = get_logger(__name__)

# directory name -> (icon, [(value, display name, parent value)])
_CATALOGUE: Dict[str, Tuple[str, List[Tuple[str, str, Optional[str]]]]] = {
    "Inventory": (
        "material-symbols:inventory",
        [
            ("electronics", "Electronics", None),
            ("textiles", "Textiles", None),
        ],
    ),
    "Raw Materials": (
        "material-symbols:construction",
        [
            ("circuits", "Circuits", "electronics"),
            ("sensors", "Sensors", "electronics"),
            ("cotton", "Cotton", "textiles"),
            ("silk", "Silk", "textiles"),
        ],
    ),
    "Departments": (
        "material-symbols:business",
        [
            ("engineering", "Engineering", None),
            ("sales", "Sales", None),
        ],
    ),
    "Employees": (
        "material-symbols:person",
        [
            ("alice", "Alice Karimova", "engineering"),
            ("bob", "Bob Tursunov", "engineering"),
            ("carol", "Carol Azimova", "sales"),
        ],
    ),
}


@dataclass
class CascadeDemo:
    directories: Dict[str, str] = field(default_factory=dict)
    bindings: Dict[str, str] = field(default_factory=dict)
    # record value ("electronics", "salary", ...) -> record id
    records: Dict[str, str] = field(default_factory=dict)
    payment_type_field_id: str = ""


async def _bound_directory(
    db: AsyncSession,
    company_id: str,
    demo: CascadeDemo,
    name: str,
    icon: str,
    metadata: Optional[dict] = None,
) -> str:
    """Directory with a required "name" label field, bound to the company."""
    directory = await SchemaRegistry.define_directory(db, name, icon, "System", metadata)
    await SchemaRegistry.define_field(db, directory.id, "name", "string", required=True)
    binding = await TenantBinding.bind(db, company_id, directory.id)
    demo.directories[name] = directory.id
    demo.bindings[name] = binding.id
    return directory.id


async def seed_cascading_demo(db: AsyncSession, company_id: str) -> Optional[CascadeDemo]:
    """
    Create the demo directories for a company. Returns None when a
    "Payment Types" directory already exists.
    """
    existing = await db.scalar(select(Directory.id).where(Directory.name == "Payment Types"))
    if existing is not None:
        logger.info("Cascading demo already seeded", directory_id=existing)
        return None

    demo = CascadeDemo()
    for name, (icon, rows) in _CATALOGUE.items():
        await _bound_directory(db, company_id, demo, name, icon)
        for value, label, parent_value in rows:
            metadata = {"name": label, "value": value}
            if parent_value is not None:
                metadata["parentValue"] = parent_value
            record = await EntityStore.create_record(
                db, demo.bindings[name], {"name": label}, metadata, company_id=company_id
            )
            demo.records[value] = record.id

    payment_types_id = await _bound_directory(
        db,
        company_id,
        demo,
        "Payment Types",
        "material-symbols:payment",
        {"selectDisplayField": "name", "cascadingEnabled": True},
    )
    chains = {
        "buying_raw_material": [
            {"fieldName": "inventory", "directoryId": demo.directories["Inventory"],
             "displayName": "Inventory", "required": True},
            {"fieldName": "raw_material", "directoryId": demo.directories["Raw Materials"],
             "displayName": "Raw Material", "required": True, "dependsOn": "inventory"},
        ],
        "salary": [
            {"fieldName": "department", "directoryId": demo.directories["Departments"],
             "displayName": "Department", "required": True},
            {"fieldName": "employee", "directoryId": demo.directories["Employees"],
             "displayName": "Employee", "required": True, "dependsOn": "department"},
        ],
        "cash": [],
    }
    labels = {
        "buying_raw_material": "Buying raw material",
        "salary": "Salary",
        "cash": "Cash",
    }
    for value, dependent_fields in chains.items():
        record = await EntityStore.create_record(
            db,
            demo.bindings["Payment Types"],
            {"name": labels[value]},
            {"name": labels[value], "value": value},
            company_id=company_id,
        )
        demo.records[value] = record.id
        await CascadeEngine.set_config(
            db,
            record.id,
            {"enabled": bool(dependent_fields), "dependentFields": dependent_fields},
            company_id,
        )

    payments = await SchemaRegistry.define_directory(
        db, "Payments", "material-symbols:receipt", "Company"
    )
    payment_type = await SchemaRegistry.define_field(
        db, payments.id, "payment_type", "relation", required=True, relation_id=payment_types_id
    )
    await SchemaRegistry.define_field(db, payments.id, "amount", "decimal", required=True)
    binding = await TenantBinding.bind(db, company_id, payments.id)
    demo.directories["Payments"] = payments.id
    demo.bindings["Payments"] = binding.id
    demo.payment_type_field_id = payment_type.id

    logger.info(
        "Cascading demo seeded",
        company_id=company_id,
        directories=len(demo.directories),
        records=len(demo.records),
    )
    return demo
