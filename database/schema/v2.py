"""Schema v2 - Reconciliation bookkeeping.

This version adds:
- notification_received_at on bounty_payments, stamped when a fiat
  processor notification reaches a terminal state
- A partial index over pending asset payments used by the wallet scanner
"""
import copy

from .v1 import schema as v1_schema

_tables = copy.deepcopy(v1_schema['tables'])

_payments = next(table for table in _tables if table['name'] == 'bounty_payments')
_payments['columns'].insert(
    len(_payments['columns']) - 2,
    {'name': 'notification_received_at', 'type': 'TIMESTAMP'}
)
_payments['indexes'].append(
    {'name': 'idx_bounty_payments_pending_scan', 'columns': ['rail', 'created_at'],
     'where': "status = 'pending' AND rail <> 'FIAT'"}
)

schema = {
    'version': 2,
    'tables': _tables,
    'migrations': [
        'ALTER TABLE bounty_payments ADD COLUMN IF NOT EXISTS notification_received_at TIMESTAMP',
        '''
        CREATE INDEX IF NOT EXISTS idx_bounty_payments_pending_scan
        ON bounty_payments(rail, created_at)
        WHERE status = 'pending' AND rail <> 'FIAT'
        '''
    ]
}
