from .cli import app

app(prog_name="logtube-automap")
