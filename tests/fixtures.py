"""
Test Fixtures and Constants
Shared test data to avoid hardcoded values across test files
"""

from datetime import date

from vetbridge.connector.dbf import FieldDescriptor

# Bridge API key (test-only, never used in production)
TEST_BRIDGE_API_KEY = "test-bridge-key"
TEST_SOURCE_TAG = "avimark"

# Base URL for the in-process ASGI app
BASE_URL = "http://test"
BRIDGE_BASE_URL = f"{BASE_URL}/api/bridge"

# Legacy table layouts (same as the practice system's tables)
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

TEST_CLIENTS = [
    {"CLIENT_ID": "CL001", "FIRST_NAME": "John", "LAST_NAME": "Doe", "PHONE": "555-0101",
     "EMAIL": "john.doe@example.com"},
    {"CLIENT_ID": "CL002", "FIRST_NAME": "Jane", "LAST_NAME": "Smith", "PHONE": "555-0102",
     "EMAIL": "jane.smith@example.com"},
]

TEST_PATIENTS = [
    {"PATIENT_ID": "P001", "NAME": "Buddy", "SPECIES": "Canine", "BREED": "Golden Retriever",
     "BIRTHDATE": date(2018, 1, 1), "CLIENT_ID": "CL001"},
    {"PATIENT_ID": "P002", "NAME": "Mittens", "SPECIES": "Feline", "BREED": "Tabby",
     "BIRTHDATE": date(2019, 5, 15), "CLIENT_ID": "CL002"},
]

TEST_APPOINTMENTS = [
    {"APPT_ID": "A001", "PATIENT_ID": "P001", "START_TIME": date(2023, 10, 27), "NOTE": "Annual Checkup",
     "STATUS": "Scheduled"},
]


def patient_payload(count: int, prefix: str = "P") -> list[dict]:
    """Wire-format patients P0000..P{count-1}"""
    return [
        {"externalId": f"{prefix}{i:04d}", "name": f"Pet {i}", "species": "Canine", "deleted": False}
        for i in range(count)
    ]
