import subprocess
# Imports the subprocess module to run external commands (pip install, flask server) from within this script

import sys
# Imports the sys module to access the current Python interpreter path (sys.executable)

import os
# Imports os module to access and copy environment variables

PORT = 5001  # Use 5001 to avoid macOS AirPlay conflict on 5000
# Sets the server port to 5001 because macOS uses port 5000 for AirPlay Receiver by default

def run_app():
    # Installs the project and starts the Stroop Trainer API

    print("Starting Stroop Trainer...")

    # 1. Install the project and its dependencies
    print("Installing dependencies...")

    try:
        subprocess.check_call([sys.executable, "-m", "pip", "install", "-e", "."])
        # Runs 'pip install -e .' so the engine modules and Flask, Firebase, loguru, etc. are importable

    except Exception as e:
        print(f"Error installing dependencies: {e}")
        # If installation fails (e.g., network error), prints the error message

        return
        # Exits the function early; the API cannot run without its dependencies

    # 2. Run the Flask API
    print(f"Starting Flask server on port {PORT}...")

    env = os.environ.copy()
    # Creates a copy of the current system environment variables to pass to the Flask subprocess

    env["PORT"] = str(PORT)
    # Sets the PORT environment variable so app.py knows which port to listen on

    backend_process = subprocess.Popen([sys.executable, "app.py"], env=env)
    # Launches app.py as a background subprocess

    print("\nStroop Trainer is running!")
    print(f"API:      http://localhost:{PORT}/api/stroop/...")
    print(f"Colors:   http://localhost:{PORT}/api/stroop/colors")
    print("Press Ctrl+C in this terminal to stop.")

    try:
        backend_process.wait()
        # Blocks until the Flask server process exits

    except KeyboardInterrupt:
        # Catches Ctrl+C keyboard interrupt so the server can be shut down gracefully
        print("\nStopping Stroop Trainer...")

        backend_process.terminate()
        # Sends a termination signal to the Flask server subprocess to stop it cleanly

if __name__ == "__main__":
    # This block ensures run_app() only executes when this file is run directly (not imported)

    run_app()
