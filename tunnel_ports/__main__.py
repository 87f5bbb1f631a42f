from tunnel_ports.cli.main import app

app(prog_name="tunnel-ports")
