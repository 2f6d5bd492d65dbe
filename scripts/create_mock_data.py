#!/usr/bin/env python3
"""
Create Mock Legacy Data Script
Writes Client.dbf, Patient.dbf and Schedule.dbf with a few rows each, so the
connector can be run end to end without a practice installation.

Usage:
    python scripts/create_mock_data.py                    # ./mock_avimark/Data
    python scripts/create_mock_data.py /tmp/avimark/Data
    CONNECTOR_SOURCE_DIR=./mock_avimark/Data python -m vetbridge.connector --once
"""

import sys
from datetime import date
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from vetbridge.connector.dbf import FieldDescriptor, LegacyRecord, write_table  # noqa: E402

CLIENT_FIELDS = [
    FieldDescriptor("CLIENT_ID", "C", 10),
    FieldDescriptor("FIRST_NAME", "C", 50),
    FieldDescriptor("LAST_NAME", "C", 50),
    FieldDescriptor("PHONE", "C", 20),
    FieldDescriptor("EMAIL", "C", 100),
]

PATIENT_FIELDS = [
    FieldDescriptor("PATIENT_ID", "C", 10),
    FieldDescriptor("NAME", "C", 50),
    FieldDescriptor("SPECIES", "C", 20),
    FieldDescriptor("BREED", "C", 50),
    FieldDescriptor("BIRTHDATE", "D", 8),
    FieldDescriptor("CLIENT_ID", "C", 10),
]

SCHEDULE_FIELDS = [
    FieldDescriptor("APPT_ID", "C", 10),
    FieldDescriptor("PATIENT_ID", "C", 10),
    FieldDescriptor("START_TIME", "D", 8),
    FieldDescriptor("NOTE", "C", 100),
    FieldDescriptor("STATUS", "C", 20),
]


def create_mock_data(data_dir: Path) -> None:
    """Write the three mock tables into data_dir (existing files are replaced)"""
    data_dir.mkdir(parents=True, exist_ok=True)
    print(f"📁 Creating mock legacy tables in {data_dir}")

    write_table(
        data_dir / "Client.dbf",
        CLIENT_FIELDS,
        [
            {"CLIENT_ID": "CL001", "FIRST_NAME": "John", "LAST_NAME": "Doe", "PHONE": "555-0101",
             "EMAIL": "john.doe@example.com"},
            {"CLIENT_ID": "CL002", "FIRST_NAME": "Jane", "LAST_NAME": "Smith", "PHONE": "555-0102",
             "EMAIL": "jane.smith@example.com"},
        ],
    )
    print("✅ Created Client.dbf")

    write_table(
        data_dir / "Patient.dbf",
        PATIENT_FIELDS,
        [
            {"PATIENT_ID": "P001", "NAME": "Buddy", "SPECIES": "Canine", "BREED": "Golden Retriever",
             "BIRTHDATE": date(2018, 1, 1), "CLIENT_ID": "CL001"},
            {"PATIENT_ID": "P002", "NAME": "Mittens", "SPECIES": "Feline", "BREED": "Tabby",
             "BIRTHDATE": date(2019, 5, 15), "CLIENT_ID": "CL002"},
            {"PATIENT_ID": "P003", "NAME": "Rex", "SPECIES": "Canine", "BREED": "German Shepherd",
             "BIRTHDATE": date(2020, 11, 20), "CLIENT_ID": "CL001"},
            # Deleted in the practice system; synced as a tombstone
            LegacyRecord(
                values={"PATIENT_ID": "P004", "NAME": "Shadow", "SPECIES": "Feline", "BREED": "Siamese",
                        "BIRTHDATE": date(2012, 3, 2), "CLIENT_ID": "CL002"},
                deleted=True,
            ),
        ],
    )
    print("✅ Created Patient.dbf")

    write_table(
        data_dir / "Schedule.dbf",
        SCHEDULE_FIELDS,
        [
            {"APPT_ID": "A001", "PATIENT_ID": "P001", "START_TIME": date(2023, 10, 27), "NOTE": "Annual Checkup",
             "STATUS": "Scheduled"},
            {"APPT_ID": "A002", "PATIENT_ID": "P002", "START_TIME": date(2023, 10, 28), "NOTE": "Vaccination",
             "STATUS": "Completed"},
        ],
    )
    print("✅ Created Schedule.dbf")


def main():
    """Main entry point"""
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / "mock_avimark" / "Data"
    create_mock_data(target)
    print()
    print(f"✅ Mock data ready. Point CONNECTOR_SOURCE_DIR at {target}")


if __name__ == "__main__":
    main()
