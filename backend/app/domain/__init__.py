"""Pure booking-domain rules shared by services and schemas."""
