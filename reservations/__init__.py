"""Slot reservation core: holds, provisional bookings, payment confirmation and expiry sweeping."""
