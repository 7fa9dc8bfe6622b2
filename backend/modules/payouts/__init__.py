"""
Payouts module.

Dispatches approved payroll payments to Telebirr wallets through the
Arifpay B2C API and reconciles the asynchronous settlement callbacks.
"""
