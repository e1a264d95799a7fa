# knowledge_gate/demo/seed_demo_data.py

from datetime import datetime, timedelta

from knowledge_gate.storage.models import ChargeRecord
from knowledge_gate.storage.repository import initialize_schema, insert_charge_records

initialize_schema()

now = datetime.now()
charges = [
    ChargeRecord(
        timestamp=now - timedelta(hours=2),
        model_id="meta-llama/llama-3-8b-instruct:free",
        sparks_charged=0.001,
        cost_usd=0.0,
        tokens_used=640,
        mode="standard",
    ),
    ChargeRecord(
        timestamp=now - timedelta(hours=1),
        model_id="openai/gpt-4o",
        sparks_charged=2.001,
        cost_usd=0.002,
        tokens_used=1500,
        mode="multi",
    ),
    ChargeRecord(
        timestamp=now - timedelta(hours=1),
        model_id="anthropic/claude-3-haiku",
        sparks_charged=0.451,
        cost_usd=0.00045,
        tokens_used=1320,
        mode="multi",
    ),
    ChargeRecord(
        timestamp=now,
        model_id="google/gemini-flash-1.5",
        sparks_charged=0.121,
        cost_usd=0.00012,
        tokens_used=910,
        mode="summary",
    ),
]

insert_charge_records(charges)

print("Demo ledger data inserted")
