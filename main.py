import asyncio
from starknet_mcp import main as run_server

def main():
    """Launch the Starknet MCP Server"""
    print("Starting Starknet MCP Server...")
    asyncio.run(run_server())

if __name__ == "__main__":
    main()
