from gridfleet.main import run

run()
