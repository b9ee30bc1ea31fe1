"""Amazon Selling-Partner API token lifecycle and aggregation layer."""
