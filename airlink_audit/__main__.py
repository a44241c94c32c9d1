from airlink_audit.main import app

app()
