"""HTTP surface for payroll sync."""
