"""Services package - Storage and observability integrations."""

from src.services.store import AppointmentStore, InMemoryAppointmentStore
from src.services.supabase import SupabaseAppointmentStore

__all__ = [
    "AppointmentStore",
    "InMemoryAppointmentStore",
    "SupabaseAppointmentStore",
]
