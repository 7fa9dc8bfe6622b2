"""
Staff module.

Companies and their employees: payment cycle, bonus multiplier, daily hour
cap, gateway merchant key and employee Telebirr wallet numbers.
"""
