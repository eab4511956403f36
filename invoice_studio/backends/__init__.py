"""Invoice backends: lifecycle guard, money, rendering, delivery and reports."""
