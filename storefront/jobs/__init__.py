"""
Jobs Package

Background jobs run from the application lifespan.
"""
from storefront.jobs.stale_orders import run_stale_order_sweep, stale_order_scheduler
