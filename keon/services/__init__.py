"""
KEON Task Manager
Service layer — business logic, no HTTP.
"""
