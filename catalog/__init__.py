"""
Book catalog core: records, cover-image attachments, ownership and accounts.
"""
