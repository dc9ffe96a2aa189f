"""
FieldLedger - Utilities Package
"""
