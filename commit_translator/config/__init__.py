"""Settings and database wiring"""
