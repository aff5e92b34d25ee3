"""
Source drivers: one integration per external site or API.

Drivers fetch and parse; they never touch the job store.
"""
