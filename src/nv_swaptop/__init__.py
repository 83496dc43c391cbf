"""nv-swaptop: correlated swap, GPU memory and NUMA placement monitor."""
