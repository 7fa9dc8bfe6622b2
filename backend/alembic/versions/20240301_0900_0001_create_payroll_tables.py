"""Create staff, timekeeping and payroll payment tables

Revision ID: 20240301_0900_0001
Revises:
Create Date: 2024-03-01 09:00:00.000000

Tables:
1. companies - payment cycle, bonus multiplier, daily hour cap, merchant key
2. employees - hourly rate and Telebirr wallet number
3. time_entries / time_entry_breaks - clock sessions with derived hours
4. payroll_payments - per-period payment with rate snapshot and gateway state
5. payroll_payment_time_entries - consumed entries, each paid at most once
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20240301_0900_0001'
down_revision = None
branch_labels = None
depends_on = None

payment_cycle_enum = sa.Enum('daily', 'weekly', 'monthly', name='paymentcycle')
time_entry_status_enum = sa.Enum('pending', 'approved', 'rejected', name='timeentrystatus')
break_category_enum = sa.Enum('meal', 'rest', 'personal', 'other', name='breakcategory')
payment_status_enum = sa.Enum(
    'pending', 'approved', 'processing', 'completed', 'failed', 'cancelled',
    name='paymentstatus',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('payment_cycle', payment_cycle_enum, nullable=False),
        sa.Column('bonus_rate_multiplier', sa.Numeric(5, 2), nullable=False),
        sa.Column('max_daily_hours', sa.Numeric(5, 2), nullable=False),
        sa.Column('merchant_key', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('bonus_rate_multiplier >= 1', name='ck_companies_bonus_multiplier'),
        sa.CheckConstraint(
            'max_daily_hours >= 1 AND max_daily_hours <= 24',
            name='ck_companies_max_daily_hours',
        ),
    )

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('telebirr_msisdn', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('hourly_rate >= 0', name='ck_employees_hourly_rate'),
    )

    op.create_table(
        'time_entries',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column('employee_id', sa.Integer, sa.ForeignKey('employees.id'), nullable=False, index=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('work_date', sa.Date, nullable=False),
        sa.Column('clock_in', sa.DateTime, nullable=False),
        sa.Column('clock_out', sa.DateTime, nullable=True),
        sa.Column('total_break_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('duration_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('regular_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('bonus_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('status', time_entry_status_enum, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('reviewed_by', sa.String(100), nullable=True),
        sa.Column('reviewed_at', sa.DateTime, nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'clock_out IS NULL OR clock_out > clock_in',
            name='ck_time_entries_clock_out_after_clock_in',
        ),
    )
    op.create_index(
        'uq_time_entries_open_per_day',
        'time_entries',
        ['employee_id', 'work_date'],
        unique=True,
        postgresql_where=sa.text('clock_out IS NULL'),
    )
    op.create_index('ix_time_entries_employee_clock_in', 'time_entries', ['employee_id', 'clock_in'])
    op.create_index('ix_time_entries_company_status', 'time_entries', ['company_id', 'status'])

    op.create_table(
        'time_entry_breaks',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column(
            'time_entry_id',
            sa.Integer,
            sa.ForeignKey('time_entries.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('started_at', sa.DateTime, nullable=False),
        sa.Column('ended_at', sa.DateTime, nullable=True),
        sa.Column('category', break_category_enum, nullable=False),
        sa.CheckConstraint(
            'ended_at IS NULL OR ended_at > started_at',
            name='ck_time_entry_breaks_end_after_start',
        ),
    )

    op.create_table(
        'payroll_payments',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column('employee_id', sa.Integer, sa.ForeignKey('employees.id'), nullable=False, index=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=False, index=True),
        sa.Column('period_start', sa.DateTime, nullable=False),
        sa.Column('period_end', sa.DateTime, nullable=False),
        sa.Column('regular_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('bonus_hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('hourly_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('bonus_rate_multiplier', sa.Numeric(5, 2), nullable=False),
        sa.Column('regular_pay', sa.Numeric(12, 2), nullable=False),
        sa.Column('bonus_pay', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', payment_status_enum, nullable=False, index=True),
        sa.Column('gateway_session_id', sa.String(100), nullable=True, unique=True),
        sa.Column('gateway_transaction_id', sa.String(100), nullable=True),
        sa.Column('failure_reason', sa.Text, nullable=True),
        sa.Column('failure_code', sa.String(50), nullable=True),
        sa.Column('retry_count', sa.Integer, nullable=False),
        sa.Column('approved_by', sa.String(100), nullable=True),
        sa.Column('approved_at', sa.DateTime, nullable=True),
        sa.Column('payment_date', sa.DateTime, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            'employee_id', 'period_start', 'period_end',
            name='uq_payroll_payments_employee_period',
        ),
        sa.CheckConstraint('amount >= 0', name='ck_payroll_payments_amount_non_negative'),
        sa.CheckConstraint(
            'retry_count >= 0 AND retry_count <= 3',
            name='ck_payroll_payments_retry_budget',
        ),
    )
    # Stuck sweep and pending listings
    op.create_index('ix_payroll_payments_status_updated', 'payroll_payments', ['status', 'updated_at'])
    op.create_index('ix_payroll_payments_company_status', 'payroll_payments', ['company_id', 'status'])

    op.create_table(
        'payroll_payment_time_entries',
        sa.Column('id', sa.Integer, primary_key=True, index=True),
        sa.Column(
            'payment_id',
            sa.Integer,
            sa.ForeignKey('payroll_payments.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        sa.Column(
            'time_entry_id',
            sa.Integer,
            sa.ForeignKey('time_entries.id'),
            nullable=False,
            unique=True,
        ),
    )


def downgrade() -> None:
    op.drop_table('payroll_payment_time_entries')
    op.drop_index('ix_payroll_payments_company_status', 'payroll_payments')
    op.drop_index('ix_payroll_payments_status_updated', 'payroll_payments')
    op.drop_table('payroll_payments')
    op.drop_table('time_entry_breaks')
    op.drop_index('ix_time_entries_company_status', 'time_entries')
    op.drop_index('ix_time_entries_employee_clock_in', 'time_entries')
    op.drop_index('uq_time_entries_open_per_day', 'time_entries')
    op.drop_table('time_entries')
    op.drop_table('employees')
    op.drop_table('companies')

    bind = op.get_bind()
    payment_status_enum.drop(bind, checkfirst=True)
    break_category_enum.drop(bind, checkfirst=True)
    time_entry_status_enum.drop(bind, checkfirst=True)
    payment_cycle_enum.drop(bind, checkfirst=True)
