from wscontroller.main import run

run()
