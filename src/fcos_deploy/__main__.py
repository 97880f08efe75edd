from fcos_deploy.cli import app

app(prog_name="fcos-deploy")
