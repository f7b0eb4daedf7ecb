"""
Services module for business logic separation.

Allocation, resolution, lifecycle management, rate limiting, statistics and
recovery tokens live here, keeping them separate from API endpoints and from
the storage backends they are given at construction time.
"""
