from tutordesk.routers import availability, scheduling

__all__ = [
    'availability',
    'scheduling',
]
