"""clinipay: payments, commission and doctor payouts for appointment bookings."""
