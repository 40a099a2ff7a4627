"""
Gas Top-up

Conversational order intake: a user picks a destination chain and amount,
a deposit asset, then a receiving address, and a SideShift order is created.
"""
