"""Bank reconciliation core: chart of accounts, ledger postings, reconciliations

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261019_0900'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum values are the member names, as stored by sqlalchemy.Enum
account_type = sa.Enum('ASSET', 'LIABILITY', 'EQUITY', 'REVENUE', 'INCOME', 'EXPENSE', name='accounttype')
normal_balance = sa.Enum('DEBIT', 'CREDIT', name='normalbalance')
cash_flow_section = sa.Enum('OPERATING', 'INVESTING', 'FINANCING', 'NON_CASH', name='cashflowsection')
posting_reference_type = sa.Enum('MANUAL', 'INVOICE', 'PAYMENT', 'ADJUSTMENT', name='postingreferencetype')
reconciliation_status = sa.Enum(
    'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'ROLLED_BACK', name='reconciliationstatus',
)
match_status = sa.Enum('UNMATCHED', 'MANUALLY_MATCHED', 'AUTO_MATCHED', name='matchstatus')
adjustment_type = sa.Enum(
    'BANK_FEE', 'INTEREST_INCOME', 'NSF', 'CORRECTION', 'OTHER', name='adjustmenttype',
)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ===========================================
    # CHART OF ACCOUNTS
    # ===========================================
    op.create_table(
        'chart_of_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_code', sa.String(20), nullable=False),
        sa.Column('account_name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('account_type', account_type, nullable=False),
        sa.Column('account_subtype', sa.String(100), nullable=True),
        sa.Column('normal_balance', normal_balance, nullable=False),
        sa.Column('is_cash_account', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cash_flow_section', cash_flow_section, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_chart_of_accounts'),
        sa.UniqueConstraint('account_code', name='uq_chart_of_accounts_account_code'),
    )

    # ===========================================
    # BANK RECONCILIATIONS
    # ===========================================
    op.create_table(
        'bank_reconciliations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('reconciliation_date', sa.Date(), nullable=False),
        sa.Column('statement_start_date', sa.Date(), nullable=False),
        sa.Column('statement_end_date', sa.Date(), nullable=False),
        sa.Column('statement_ending_balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('calculated_book_balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('cleared_balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('difference', sa.Numeric(18, 2), nullable=False),
        sa.Column('status', reconciliation_status, nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by_id', sa.Uuid(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_id', sa.Uuid(), nullable=True),
        sa.Column('rolled_back_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rolled_back_by_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_bank_reconciliations'),
        sa.ForeignKeyConstraint(
            ['account_id'], ['chart_of_accounts.id'],
            name='fk_bank_reconciliations_account_id_chart_of_accounts',
            ondelete='RESTRICT',
        ),
    )
    op.create_index('ix_bank_reconciliations_account_id', 'bank_reconciliations', ['account_id'])
    op.create_index('ix_reconciliation_account_status', 'bank_reconciliations', ['account_id', 'status'])
    # One in-progress reconciliation per account
    op.create_index(
        'uq_reconciliation_in_progress_account',
        'bank_reconciliations',
        ['account_id'],
        unique=True,
        postgresql_where=sa.text("status = 'IN_PROGRESS'"),
    )

    # ===========================================
    # LEDGER POSTINGS
    # ===========================================
    op.create_table(
        'ledger_postings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entry_number', sa.String(50), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('debit_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('credit_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('description', sa.String(500), nullable=False, server_default=''),
        sa.Column('reference_type', posting_reference_type, nullable=False),
        sa.Column('reference_id', sa.Uuid(), nullable=True),
        sa.Column('fiscal_year', sa.Integer(), nullable=True),
        sa.Column('fiscal_period', sa.Integer(), nullable=True),
        sa.Column('reconciliation_id', sa.Uuid(), nullable=True),
        sa.Column('cleared_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cleared_by_id', sa.Uuid(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_ledger_postings'),
        sa.ForeignKeyConstraint(
            ['account_id'], ['chart_of_accounts.id'],
            name='fk_ledger_postings_account_id_chart_of_accounts',
            ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['reconciliation_id'], ['bank_reconciliations.id'],
            name='fk_ledger_postings_reconciliation_id_bank_reconciliations',
            ondelete='SET NULL',
        ),
        sa.CheckConstraint(
            '(debit_amount > 0 AND credit_amount = 0) OR (credit_amount > 0 AND debit_amount = 0) '
            'OR (debit_amount = 0 AND credit_amount = 0)',
            name='ck_ledger_postings_debit_or_credit',
        ),
    )
    op.create_index('ix_ledger_postings_entry_number', 'ledger_postings', ['entry_number'])
    op.create_index('ix_ledger_postings_entry_date', 'ledger_postings', ['entry_date'])
    op.create_index('ix_ledger_postings_account_id', 'ledger_postings', ['account_id'])
    op.create_index('ix_ledger_postings_reconciliation_id', 'ledger_postings', ['reconciliation_id'])
    op.create_index('ix_posting_account_date', 'ledger_postings', ['account_id', 'entry_date'])

    # ===========================================
    # BANK STATEMENT LINES
    # ===========================================
    op.create_table(
        'bank_statement_lines',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reconciliation_id', sa.Uuid(), nullable=False),
        sa.Column('external_transaction_id', sa.String(100), nullable=True),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('balance', sa.Numeric(18, 2), nullable=True),
        sa.Column('match_status', match_status, nullable=False),
        sa.Column('matched_posting_id', sa.Uuid(), nullable=True),
        sa.Column('matched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('matched_by_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_bank_statement_lines'),
        sa.ForeignKeyConstraint(
            ['reconciliation_id'], ['bank_reconciliations.id'],
            name='fk_bank_statement_lines_reconciliation_id_bank_reconciliations',
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['matched_posting_id'], ['ledger_postings.id'],
            name='fk_bank_statement_lines_matched_posting_id_ledger_postings',
            ondelete='SET NULL',
        ),
    )
    op.create_index('ix_bank_statement_lines_reconciliation_id', 'bank_statement_lines', ['reconciliation_id'])
    op.create_index('ix_bank_statement_lines_transaction_date', 'bank_statement_lines', ['transaction_date'])

    # ===========================================
    # RECONCILIATION ADJUSTMENTS
    # ===========================================
    op.create_table(
        'reconciliation_adjustments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reconciliation_id', sa.Uuid(), nullable=False),
        sa.Column('posting_id', sa.Uuid(), nullable=True),
        sa.Column('adjustment_type', adjustment_type, nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('debit_account_id', sa.Uuid(), nullable=False),
        sa.Column('credit_account_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_reconciliation_adjustments'),
        sa.ForeignKeyConstraint(
            ['reconciliation_id'], ['bank_reconciliations.id'],
            name='fk_reconciliation_adjustments_reconciliation_id_bank_reconciliations',
            ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['posting_id'], ['ledger_postings.id'],
            name='fk_reconciliation_adjustments_posting_id_ledger_postings',
            ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['debit_account_id'], ['chart_of_accounts.id'],
            name='fk_reconciliation_adjustments_debit_account_id_chart_of_accounts',
            ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['credit_account_id'], ['chart_of_accounts.id'],
            name='fk_reconciliation_adjustments_credit_account_id_chart_of_accounts',
            ondelete='RESTRICT',
        ),
        sa.CheckConstraint('amount > 0', name='ck_reconciliation_adjustments_positive_amount'),
        sa.CheckConstraint(
            'debit_account_id <> credit_account_id',
            name='ck_reconciliation_adjustments_distinct_accounts',
        ),
    )
    op.create_index(
        'ix_reconciliation_adjustments_reconciliation_id',
        'reconciliation_adjustments',
        ['reconciliation_id'],
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('reconciliation_adjustments')
    op.drop_table('bank_statement_lines')
    op.drop_table('ledger_postings')
    op.drop_table('bank_reconciliations')
    op.drop_table('chart_of_accounts')

    bind = op.get_bind()
    for enum_type in (
        adjustment_type, match_status, reconciliation_status,
        posting_reference_type, cash_flow_section, normal_balance, account_type,
    ):
        enum_type.drop(bind, checkfirst=True)
