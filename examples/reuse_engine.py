# NEWUOA example: minimize a family of quadratics, reusing one engine (and its workspace)
import numpy as np
import newuoa

n = 4
A = np.diag(np.arange(1.0, n + 1.0)) + 0.1 * np.ones((n, n))

# For optional extra output details
# import logging
# logging.basicConfig(level=logging.DEBUG, format='%(message)s')

engine = newuoa.Newuoa(n, rhobeg=0.5, rhoend=1e-8, maxfun=2000)

for shift in [0.0, 1.0, -2.5]:
    xmin = shift * np.ones((n,))
    objfun = lambda x: np.dot(x - xmin, np.dot(A, x - xmin))

    # x is overwritten with the solution
    x = np.zeros((n,))
    try:
        f = engine.perform(x, objfun)
    except newuoa.NewuoaError as e:
        print("Solver failed: %s" % str(e))
        continue
    print("Shift %g: xmin = %s, f(xmin) = %.10g" % (shift, str(x), f))
