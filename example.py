from datetime import date

from fx_ledger import FxLedger, Invoice

print(FxLedger.__version__)  # 0.1.0

# Default usage: bundled SQLite rate store, CNY base currency
fx = FxLedger()

success, error = fx.connection()  # => to check the connectivity
if not success:
    print(error)
    exit(1)

# Peek at today's Bank of China quotes without storing them
for quote in fx.preview_rates()[:3]:
    print(quote.as_dict())
# => {'currency': 'AUD', 'currency_name': '澳大利亚元', 'buying_rate': 4.725, ...}

# Fetch, normalise and store today's rates (direct, inverse and cross pairs)
result = fx.sync_rates()
print(result.message)
# => Successfully synced 62 exchange rates

# Rate lookup, falling back to the latest earlier date when today is missing
print(fx.get_rate("EUR", "CNY"))
print(fx.get_rate("EUR", "USD", date(2026, 2, 20)))

# An accountant override that later syncs will keep
fx.record_manual_rate("USD", "CNY", 7.20, date(2026, 2, 19))
fx.record_manual_rates(
    [
        {"from_currency": "EUR", "to_currency": "CNY", "rate": 7.80, "rate_date": "2026-02-19"},
        {"from_currency": "GBP", "to_currency": "CNY", "rate": 9.10, "rate_date": "2026-02-19"},
    ]
)
print(fx.list_rates(from_currency="USD", on=date(2026, 2, 19)))

# Bind the settlement rate onto an invoice
invoice = Invoice(invoice_number="INV-2026-0001", amount=1000, currency="EUR", issue_date=date.today())
invoice = fx.bind_settlement_rate(invoice)
print(invoice.exchange_rate, invoice.exchange_rate_source, invoice.base_amount)
# => 7.85 BANK_OF_CHINA 7850.0

# Changing the currency re-binds the rate
invoice = fx.update_invoice(invoice, {"currency": "USD"})
print(invoice.settlement_fields())

fx.close()
