"""Core ledger and Google Sheets synchronisation package for StockLedger."""
