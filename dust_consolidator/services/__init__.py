"""Services: custody executor, gas ledger, cross-chain gateway, events, fee estimate."""
