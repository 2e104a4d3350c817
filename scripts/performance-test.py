#!/usr/bin/env python3
import sys
import os
import time
from datetime import datetime

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from reconciliation_engine import ReconciliationEngine
from models import Channel, QRCode, Transaction

channels = list(Channel)

# Generate test data
transactions = [Transaction(
    id=f'txn_{i}',
    ticket_id='T1',
    user_id=f'user_{i % 700}',
    order_id=f'ORDER-{i}',
    quantity=2,
    status='PAID WITH QR',
    total=200.0,
    created_at=datetime(2025, 1, 1),
    channel=channels[i % len(channels)],
) for i in range(10000)]

qr_codes = []
for i, txn in enumerate(transactions):
    issued = 1 if i < 500 else 2  # 500 short by one code
    qr_codes.extend(
        QRCode(id=f'{txn.id}_qr_{n}', transaction_id=txn.id, user_id=txn.user_id)
        for n in range(issued)
    )

# Performance test
start_time = time.time()
engine = ReconciliationEngine()
result = engine.reconcile(transactions, qr_codes)
duration = time.time() - start_time

print(f'Reconciled 10,000 transactions against {len(qr_codes):,} QR codes in {duration:.2f} seconds')
assert duration < 30, f'Performance test failed: {duration:.2f}s > 30s'
assert len(result.deficient) == 500, f'Expected 500 deficient, got {len(result.deficient)}'
assert result.stats.missing_qrs == 500, f'Expected 500 missing codes, got {result.stats.missing_qrs}'
print('Performance test passed')
