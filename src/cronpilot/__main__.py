from cronpilot.main import run

run()
